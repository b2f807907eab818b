import json
import math
import os
import warnings

import numpy
import pandas

from flexquant.util import (
    FatalConfigError,
    MissingArtifactWarning,
    check_kmer_size,
    get_qc_report_path,
    get_qc_summary_path,
    get_quant_prefix,
    print_stage,
)

RUN_INFO_NAME = 'run_info.json'
ABUNDANCE_NAME = 'abundance.tsv'
RUN_INFO_FIELDS = [
    ('n_processed', 'Total reads processed'),
    ('n_pseudoaligned', 'Reads pseudoaligned'),
    ('p_pseudoaligned', 'Pseudoalignment rate'),
]
MEAN_TPM_DENOMINATORS = ['all_rows', 'data_rows']
REPORT_HEADER = 'Quality Check Report\n=====================\n\n'


def format_number(value):
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return 'NA'
    value = float(value)
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return '{:.6g}'.format(value)


def format_run_info_value(value):
    return json.dumps(value)


def read_run_info(path):
    with open(path) as f:
        run_info = json.load(f)
    if not isinstance(run_info, dict):
        raise ValueError('run_info.json does not contain a JSON object: {}'.format(path))
    return {key: run_info.get(key) for key, _ in RUN_INFO_FIELDS}


def summarize_abundance(path, mean_denominator='all_rows'):
    """Count transcripts with TPM > 0 and average the TPM column (5th column).

    With mean_denominator='all_rows' the sum is divided by the number of lines
    in the table including its header, which underestimates the mean by a
    factor of n/(n+1). 'data_rows' divides by the number of transcripts.
    """
    if mean_denominator not in MEAN_TPM_DENOMINATORS:
        raise ValueError('Unknown mean TPM denominator: {}'.format(mean_denominator))
    try:
        df = pandas.read_csv(path, sep='\t', header=0)
        has_header = True
    except pandas.errors.EmptyDataError:
        df = pandas.DataFrame()
        has_header = False
    num_rows = df.shape[0]
    if df.shape[1] >= 5:
        tpm = pandas.to_numeric(df.iloc[:, 4], errors='coerce').fillna(0).to_numpy(dtype=float)
    else:
        tpm = numpy.zeros(num_rows, dtype=float)
    if mean_denominator == 'all_rows':
        denominator = num_rows + int(has_header)
    else:
        denominator = num_rows
    summary = dict()
    summary['num_transcripts'] = num_rows
    summary['num_quantified'] = int((tpm > 0).sum())
    summary['mean_tpm'] = (tpm.sum() / denominator) if denominator > 0 else numpy.nan
    return summary


def collect_sample_qc(sample_dir, mean_denominator='all_rows'):
    sample_name = os.path.basename(os.path.normpath(sample_dir))
    metrics = {'sample_name': sample_name}
    lines = ['Sample: {}'.format(sample_name)]
    run_info_path = os.path.join(sample_dir, RUN_INFO_NAME)
    if os.path.isfile(run_info_path):
        try:
            run_info = read_run_info(run_info_path)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError.
            txt = '{} could not be parsed for {}: {}'.format(RUN_INFO_NAME, sample_name, e)
            warnings.warn(txt, MissingArtifactWarning)
            lines.append('  Warning: {}'.format(txt))
        else:
            for key, label in RUN_INFO_FIELDS:
                metrics[key] = run_info[key]
                lines.append('  {}: {}'.format(label, format_run_info_value(run_info[key])))
    else:
        txt = '{} not found for {}'.format(RUN_INFO_NAME, sample_name)
        warnings.warn(txt, MissingArtifactWarning)
        lines.append('  Warning: {}'.format(txt))
    abundance_path = os.path.join(sample_dir, ABUNDANCE_NAME)
    summary = None
    if os.path.isfile(abundance_path):
        try:
            summary = summarize_abundance(abundance_path, mean_denominator=mean_denominator)
        except ValueError as e:
            # pandas ParserError and UnicodeDecodeError are ValueErrors.
            txt = '{} could not be parsed for {}: {}'.format(ABUNDANCE_NAME, sample_name, e)
            warnings.warn(txt, MissingArtifactWarning)
            lines.append('  Warning: {}'.format(txt))
    if summary is not None:
        metrics['num_quantified'] = summary['num_quantified']
        metrics['mean_tpm'] = summary['mean_tpm']
        lines.append('  Genes quantified (TPM > 0): {}'.format(summary['num_quantified']))
        lines.append('  Mean TPM: {}'.format(format_number(summary['mean_tpm'])))
    elif not os.path.isfile(abundance_path):
        txt = '{} not found for {}'.format(ABUNDANCE_NAME, sample_name)
        warnings.warn(txt, MissingArtifactWarning)
        lines.append('  Warning: {}'.format(txt))
    return metrics, lines


def list_sample_dirs(quant_prefix):
    sample_dirs = list()
    with os.scandir(quant_prefix) as entries:
        for entry in entries:
            if entry.is_dir():
                sample_dirs.append(entry.path)
    return sorted(sample_dirs)


def write_qc_summary(qc_report, summary_path):
    columns = ['sample_name'] + [key for key, _ in RUN_INFO_FIELDS] + ['num_quantified', 'mean_tpm']
    df = pandas.DataFrame(qc_report, columns=columns)
    print('Writing QC summary table: {}'.format(summary_path), flush=True)
    df.to_csv(summary_path, sep='\t', index=False)
    return df


def aggregate(quant_prefix, report_path, summary_path=None, mean_denominator='all_rows'):
    if not os.path.isdir(quant_prefix):
        raise NotADirectoryError('Quantification directory not found: {}'.format(quant_prefix))
    qc_report = list()
    with open(report_path, 'w') as f:
        f.write(REPORT_HEADER)
        for sample_dir in list_sample_dirs(quant_prefix):
            metrics, lines = collect_sample_qc(sample_dir, mean_denominator=mean_denominator)
            f.write('\n'.join(lines) + '\n\n')
            f.flush()
            qc_report.append(metrics)
    print('QC report generated: {}'.format(report_path), flush=True)
    if summary_path is not None:
        write_qc_summary(qc_report, summary_path)
    return qc_report


def qc_main(args):
    kmer_size = check_kmer_size(args.k)
    quant_prefix = get_quant_prefix(args.work_dir, kmer_size)
    if not os.path.isdir(quant_prefix):
        txt = 'Quantification directory not found: {}. Run `flexquant quant` or `flexquant run` first.'
        raise FatalConfigError(txt.format(quant_prefix))
    print_stage('Performing quality checks.')
    return aggregate(
        quant_prefix=quant_prefix,
        report_path=get_qc_report_path(args.work_dir),
        summary_path=get_qc_summary_path(args.work_dir),
        mean_denominator=args.mean_tpm_denominator,
    )
