import gzip
import os
import re
import sys

from flexquant.util import (
    DEFAULT_MIN_LENGTH,
    prepare_work_dir,
    print_stage,
    validate_positive_int_option,
)

NON_ATGCN = re.compile(r'[^ATGCN]')


def clean_sequence_line(line):
    return NON_ATGCN.sub('N', line)


def iter_cleaned_records(lines, min_length=DEFAULT_MIN_LENGTH, stats=None):
    """Yield (header, sequence) for every record whose cleaned sequence is long enough.

    A record starts at a '>' line and runs until the next one or the end of input.
    Sequence lines are concatenated without separators after replacing every
    character outside A/T/G/C/N with N. Records shorter than min_length are
    dropped. Sequence lines seen before the first header are counted as orphans.
    """
    if stats is None:
        stats = dict()
    for key in ['num_kept', 'num_discarded', 'num_orphan_lines']:
        stats.setdefault(key, 0)
    header = None
    chunks = []
    seq_len = 0
    for line in lines:
        line = line.rstrip('\r\n')
        if line.startswith('>'):
            if header is not None:
                if seq_len >= min_length:
                    stats['num_kept'] += 1
                    yield header, ''.join(chunks)
                else:
                    stats['num_discarded'] += 1
            header = line
            chunks = []
            seq_len = 0
            continue
        if header is None:
            if line != '':
                stats['num_orphan_lines'] += 1
            continue
        cleaned = clean_sequence_line(line)
        chunks.append(cleaned)
        seq_len += len(cleaned)
    if header is not None:
        if seq_len >= min_length:
            stats['num_kept'] += 1
            yield header, ''.join(chunks)
        else:
            stats['num_discarded'] += 1


def open_reference(path):
    if path.endswith('.gz'):
        return gzip.open(path, 'rt')
    return open(path, 'r')


def get_cleaned_reference_path(cds_path, work_dir):
    basename = os.path.basename(cds_path)
    if basename.endswith('.gz'):
        basename = basename[:-3]
    return os.path.join(work_dir, 'cleaned_' + basename)


def clean_reference(in_path, out_path, min_length=DEFAULT_MIN_LENGTH):
    if not os.path.isfile(in_path):
        raise FileNotFoundError('Reference fasta file not found: {}'.format(in_path))
    stats = dict()
    with open_reference(in_path) as fin, open(out_path, 'w') as fout:
        for header, sequence in iter_cleaned_records(fin, min_length=min_length, stats=stats):
            fout.write(header + '\n' + sequence + '\n')
    return stats


def clean_main(args):
    min_length = validate_positive_int_option(args.min_length, '--min_length')
    prepare_work_dir(args.work_dir)
    cleaned_path = get_cleaned_reference_path(args.cds, args.work_dir)
    print_stage('Checking and cleaning CDS FASTA: {}'.format(args.cds))
    stats = clean_reference(args.cds, cleaned_path, min_length=min_length)
    txt = 'Kept {:,} records. Discarded {:,} records shorter than {:,} nt.'
    print(txt.format(stats['num_kept'], stats['num_discarded'], min_length), flush=True)
    if stats['num_orphan_lines'] > 0:
        txt = 'Ignored {:,} sequence line(s) that appeared before the first header line.\n'
        sys.stderr.write(txt.format(stats['num_orphan_lines']))
    if stats['num_kept'] == 0:
        sys.stderr.write('No record passed the cleaning step. Index construction is expected to fail.\n')
    print('Cleaned CDS file created: {}'.format(cleaned_path), flush=True)
    return cleaned_path
