import glob
import os
import shutil
import subprocess
import sys
import time

from flexquant.util import (
    DEFAULT_BOOTSTRAP_SAMPLES,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    FatalConfigError,
    MissingPairError,
    NoSamplesProcessedError,
    QuantificationError,
    check_kallisto_dependency,
    check_kmer_size,
    get_index_path,
    get_quant_prefix,
    print_stage,
    validate_positive_int_option,
)

R1_SUFFIX = '_R1.fastq.gz'


def discover_sample_units(fastq_dir='.'):
    r1_files = sorted(glob.glob(os.path.join(glob.escape(fastq_dir), '*' + R1_SUFFIX)))
    sample_units = list()
    for r1_file in r1_files:
        r1_name = os.path.basename(r1_file)
        sample_name = r1_name[:-len(R1_SUFFIX)]
        if sample_name == '':
            sys.stderr.write('Skipping R1 file with an empty sample name: {}\n'.format(r1_file))
            continue
        # Only the first marker is swapped, so sample names containing "_R1" keep it.
        r2_name = r1_name.replace('_R1', '_R2', 1)
        sample_unit = dict()
        sample_unit['sample_name'] = sample_name
        sample_unit['read_file1'] = r1_file
        sample_unit['read_file2'] = os.path.join(os.path.dirname(r1_file), r2_name)
        sample_units.append(sample_unit)
    return sample_units


def check_sample_unit(sample_unit):
    for key in ['read_file1', 'read_file2']:
        if not os.path.isfile(sample_unit[key]):
            txt = 'Missing paired-end file for {}: {}'
            raise MissingPairError(txt.format(sample_unit['sample_name'], sample_unit[key]))
    return sample_unit


def get_sample_output_dir(quant_prefix, sample_name):
    return os.path.join(quant_prefix, sample_name)


def is_sample_output_dir(output_dir, quant_prefix):
    output_dir = os.path.realpath(output_dir)
    return (os.path.dirname(output_dir) == os.path.realpath(quant_prefix)) and (os.path.basename(output_dir) != '')


def get_sample_log_path(quant_prefix, sample_name):
    return os.path.join(quant_prefix, sample_name + '_quant.log')


def build_quant_command(sample_unit, index_path, output_dir, threads, bias=False,
                        bootstrap_samples=DEFAULT_BOOTSTRAP_SAMPLES, kallisto_exe='kallisto'):
    quant_cmd = [kallisto_exe, 'quant', '-i', index_path, '-o', output_dir, '-t', str(threads)]
    if bias:
        quant_cmd.append('--bias')
    quant_cmd.append('--bootstrap-samples={}'.format(bootstrap_samples))
    quant_cmd.extend([sample_unit['read_file1'], sample_unit['read_file2']])
    return quant_cmd


def call_kallisto(quant_cmd, log_path):
    print('Command: {}'.format(' '.join(quant_cmd)), flush=True)
    kallisto_out = subprocess.run(quant_cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    log_txt = kallisto_out.stdout.decode('utf8', errors='replace')
    with open(log_path, 'w') as f:
        f.write(log_txt)
    print(log_txt, flush=True)
    return kallisto_out.returncode


def new_outcome(sample_unit, quant_prefix):
    outcome = dict()
    outcome['sample_name'] = sample_unit['sample_name']
    outcome['status'] = 'pending'
    outcome['attempts'] = 0
    outcome['output_dir'] = get_sample_output_dir(quant_prefix, sample_unit['sample_name'])
    outcome['log_path'] = get_sample_log_path(quant_prefix, sample_unit['sample_name'])
    outcome['error'] = None
    return outcome


def quantify_sample(sample_unit, index_path, quant_prefix, threads, bias=False,
                    bootstrap_samples=DEFAULT_BOOTSTRAP_SAMPLES, max_attempts=DEFAULT_MAX_ATTEMPTS,
                    retry_delay=DEFAULT_RETRY_DELAY, kallisto_exe='kallisto'):
    outcome = new_outcome(sample_unit, quant_prefix)
    sample_name = sample_unit['sample_name']
    quant_cmd = build_quant_command(sample_unit, index_path, outcome['output_dir'], threads, bias=bias,
                                    bootstrap_samples=bootstrap_samples, kallisto_exe=kallisto_exe)
    # Outputs left by an earlier run are never removed.
    is_new_output_dir = not os.path.exists(outcome['output_dir'])
    attempt = 1
    while outcome['status'] == 'pending':
        print('Attempt {} of {}'.format(attempt, max_attempts), flush=True)
        outcome['attempts'] = attempt
        returncode = call_kallisto(quant_cmd, outcome['log_path'])
        if returncode == 0:
            print('Quantification successful for {}'.format(sample_name), flush=True)
            outcome['status'] = 'succeeded'
            continue
        sys.stderr.write('Error in quantification for {} (Attempt {})\n'.format(sample_name, attempt))
        if attempt >= max_attempts:
            txt = 'Failed to quantify {} after {} attempts. See log file: {}'
            txt = txt.format(sample_name, max_attempts, outcome['log_path'])
            sys.stderr.write(txt + '\n')
            outcome['status'] = 'failed'
            outcome['error'] = QuantificationError(txt)
            continue
        print('Retrying in {} seconds...'.format(retry_delay), flush=True)
        time.sleep(retry_delay)
        attempt += 1
    if (outcome['status'] == 'failed') and is_new_output_dir and os.path.isdir(outcome['output_dir']):
        if is_sample_output_dir(outcome['output_dir'], quant_prefix):
            print('Removing incomplete output directory: {}'.format(outcome['output_dir']))
            shutil.rmtree(outcome['output_dir'])
        else:
            txt = 'Not removing {}: not a sample directory under {}\n'
            sys.stderr.write(txt.format(outcome['output_dir'], quant_prefix))
    return outcome


def print_quant_summary(outcomes, quant_prefix):
    num_succeeded = sum([o['status'] == 'succeeded' for o in outcomes])
    num_failed = sum([o['status'] == 'failed' for o in outcomes])
    num_skipped = sum([o['status'] == 'skipped' for o in outcomes])
    txt = 'Quantification summary: {:,} succeeded, {:,} failed, {:,} skipped.'
    print(txt.format(num_succeeded, num_failed, num_skipped), flush=True)
    for outcome in outcomes:
        if outcome['status'] == 'failed':
            sys.stderr.write('Failed sample: {} (log: {})\n'.format(outcome['sample_name'], outcome['log_path']))
        elif outcome['status'] == 'skipped':
            sys.stderr.write('Skipped sample: {} ({})\n'.format(outcome['sample_name'], outcome['error']))
    if num_succeeded > 0:
        print('All samples have been processed. Results are in {}'.format(quant_prefix), flush=True)
    return num_succeeded


def quantify_all(index_path, sample_units, threads, bias=False, quant_prefix='.',
                 bootstrap_samples=DEFAULT_BOOTSTRAP_SAMPLES, max_attempts=DEFAULT_MAX_ATTEMPTS,
                 retry_delay=DEFAULT_RETRY_DELAY, kallisto_exe='kallisto'):
    if not os.path.exists(quant_prefix):
        os.makedirs(quant_prefix)
    outcomes = list()
    for sample_unit in sample_units:
        print('')
        try:
            check_sample_unit(sample_unit)
        except MissingPairError as e:
            sys.stderr.write('Error: {}\n'.format(e))
            outcome = new_outcome(sample_unit, quant_prefix)
            outcome['status'] = 'skipped'
            outcome['error'] = e
            outcomes.append(outcome)
            continue
        print('Processing sample: {}'.format(sample_unit['sample_name']), flush=True)
        outcome = quantify_sample(
            sample_unit=sample_unit,
            index_path=index_path,
            quant_prefix=quant_prefix,
            threads=threads,
            bias=bias,
            bootstrap_samples=bootstrap_samples,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            kallisto_exe=kallisto_exe,
        )
        outcomes.append(outcome)
    num_succeeded = print_quant_summary(outcomes, quant_prefix)
    if num_succeeded == 0:
        raise NoSamplesProcessedError('No samples were processed successfully. Check your input files and logs.')
    return outcomes


def get_retry_options(args):
    options = dict()
    options['bootstrap_samples'] = validate_positive_int_option(args.bootstrap_samples, '--bootstrap_samples', allow_zero=True)
    options['max_attempts'] = validate_positive_int_option(args.max_attempts, '--max_attempts')
    options['retry_delay'] = validate_positive_int_option(args.retry_delay, '--retry_delay', allow_zero=True)
    return options


def run_quant_stage(args, index_path, kmer_size):
    threads = validate_positive_int_option(args.threads, '--threads')
    options = get_retry_options(args)
    quant_prefix = get_quant_prefix(args.work_dir, kmer_size)
    sample_units = discover_sample_units(args.fastq_dir)
    print('{:,} sample(s) detected in: {}'.format(len(sample_units), os.path.realpath(args.fastq_dir)), flush=True)
    return quantify_all(
        index_path=index_path,
        sample_units=sample_units,
        threads=threads,
        bias=args.bias,
        quant_prefix=quant_prefix,
        kallisto_exe=args.kallisto_exe,
        **options
    )


def quant_main(args):
    kmer_size = check_kmer_size(args.k)
    check_kallisto_dependency(args.kallisto_exe)
    index_path = get_index_path(args.work_dir, kmer_size)
    if not os.path.isfile(index_path):
        txt = 'Kallisto index not found: {}. Run `flexquant index` or `flexquant run` first.'
        raise FatalConfigError(txt.format(index_path))
    print_stage('Starting quantification.')
    return run_quant_stage(args, index_path, kmer_size)
