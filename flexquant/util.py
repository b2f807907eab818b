import datetime
import os
import subprocess
import sys

DEFAULT_WORK_DIR = 'kallisto'
DEFAULT_MIN_LENGTH = 20
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 5
DEFAULT_BOOTSTRAP_SAMPLES = 100
QC_REPORT_NAME = 'qc_report.txt'
QC_SUMMARY_NAME = 'qc_summary.tsv'


class FatalConfigError(ValueError):
    pass


class IndexBuildError(RuntimeError):
    pass


class MissingPairError(FileNotFoundError):
    pass


class QuantificationError(RuntimeError):
    pass


class NoSamplesProcessedError(RuntimeError):
    pass


class MissingArtifactWarning(UserWarning):
    pass


def strtobool(val):
    val = val.lower()
    if val in ("y", "yes", "t", "true", "on", "1"):
        return True
    elif val in ("n", "no", "f", "false", "off", "0"):
        return False
    else:
        raise ValueError(f"invalid truth value {val!r}")


def validate_positive_int_option(value, option_name, allow_zero=False):
    try:
        value_int = int(value)
    except (TypeError, ValueError):
        raise FatalConfigError('{} must be an integer: {}'.format(option_name, value))
    if isinstance(value, float) and (value != value_int):
        raise FatalConfigError('{} must be an integer: {}'.format(option_name, value))
    if allow_zero:
        if value_int < 0:
            raise FatalConfigError('{} must be >= 0: {}'.format(option_name, value))
    elif value_int < 1:
        raise FatalConfigError('{} must be > 0: {}'.format(option_name, value))
    return value_int


def print_stage(message):
    print('{}: {}'.format(datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S'), message), flush=True)


def get_index_path(work_dir, kmer_size):
    return os.path.join(work_dir, 'kallisto_index_k{}'.format(kmer_size))


def get_quant_prefix(work_dir, kmer_size):
    return os.path.join(work_dir, 'kallisto_quant_k{}'.format(kmer_size))


def get_qc_report_path(work_dir):
    return os.path.join(work_dir, QC_REPORT_NAME)


def get_qc_summary_path(work_dir):
    return os.path.join(work_dir, QC_SUMMARY_NAME)


def prepare_work_dir(work_dir):
    if os.path.exists(work_dir) and not os.path.isdir(work_dir):
        raise NotADirectoryError('Work directory path exists but is not a directory: {}'.format(work_dir))
    if not os.path.exists(work_dir):
        os.makedirs(work_dir)
    return work_dir


def check_kallisto_dependency(kallisto_exe='kallisto'):
    try:
        out = subprocess.run([kallisto_exe, 'version'], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except (FileNotFoundError, PermissionError):
        raise FatalConfigError('{} is not installed or not in PATH'.format(kallisto_exe))
    if out.returncode != 0:
        txt = 'kallisto dependency probe failed with exit code {}: {}'
        raise FatalConfigError(txt.format(out.returncode, kallisto_exe))
    version = out.stdout.decode('utf8').strip()
    print('Kallisto version:')
    print(version, flush=True)
    return version


def check_kmer_size(kmer_size):
    kmer_size = validate_positive_int_option(kmer_size, '--k')
    if kmer_size % 2 == 0:
        sys.stderr.write('--k is an even number ({}). kallisto only accepts odd k-mer sizes.\n'.format(kmer_size))
    return kmer_size
