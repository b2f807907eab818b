from flexquant.clean import clean_main
from flexquant.index import build_index
from flexquant.qc import aggregate
from flexquant.quant import get_retry_options, run_quant_stage
from flexquant.util import (
    check_kallisto_dependency,
    check_kmer_size,
    get_index_path,
    get_qc_report_path,
    get_qc_summary_path,
    get_quant_prefix,
    prepare_work_dir,
    print_stage,
    validate_positive_int_option,
)


def run_main(args):
    kmer_size = check_kmer_size(args.k)
    validate_positive_int_option(args.threads, '--threads')
    get_retry_options(args)
    check_kallisto_dependency(args.kallisto_exe)
    prepare_work_dir(args.work_dir)

    # Step 1: clean the CDS reference
    cleaned_path = clean_main(args)

    # Step 2: build the index; failures here are fatal
    print_stage('Building Kallisto index.')
    index_path = build_index(cleaned_path, get_index_path(args.work_dir, kmer_size), kmer_size,
                             kallisto_exe=args.kallisto_exe)

    # Step 3: quantify every sample with retries
    print_stage('Starting quantification.')
    outcomes = run_quant_stage(args, index_path, kmer_size)

    # Step 4: QC report over successful samples
    print_stage('Performing quality checks.')
    qc_report = aggregate(
        quant_prefix=get_quant_prefix(args.work_dir, kmer_size),
        report_path=get_qc_report_path(args.work_dir),
        summary_path=get_qc_summary_path(args.work_dir),
        mean_denominator=args.mean_tpm_denominator,
    )
    print_stage('Pipeline completed successfully.')
    return outcomes, qc_report
