import os
import subprocess

from flexquant.util import (
    IndexBuildError,
    check_kallisto_dependency,
    check_kmer_size,
    get_index_path,
    prepare_work_dir,
    print_stage,
)


def build_index(cleaned_reference, index_path, kmer_size, kallisto_exe='kallisto'):
    if not os.path.isfile(cleaned_reference):
        raise IndexBuildError('Cleaned reference not found: {}'.format(cleaned_reference))
    index_cmd = [kallisto_exe, 'index', '-i', index_path, '-k', str(kmer_size), cleaned_reference]
    print('Command: {}'.format(' '.join(index_cmd)), flush=True)
    index_out = subprocess.run(index_cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    print('kallisto index stdout:')
    print(index_out.stdout.decode('utf8'))
    print('kallisto index stderr:')
    print(index_out.stderr.decode('utf8'), flush=True)
    if index_out.returncode != 0:
        txt = 'Index creation failed. kallisto index exited with code {}.'
        raise IndexBuildError(txt.format(index_out.returncode))
    # kallisto can exit cleanly without writing the index, e.g. on an empty reference.
    if not os.path.isfile(index_path):
        raise IndexBuildError('Index creation failed. Index file not found: {}'.format(index_path))
    print('Index created successfully: {}'.format(index_path), flush=True)
    return index_path


def index_main(args):
    kmer_size = check_kmer_size(args.k)
    check_kallisto_dependency(args.kallisto_exe)
    prepare_work_dir(args.work_dir)
    index_path = get_index_path(args.work_dir, kmer_size)
    print_stage('Building Kallisto index.')
    return build_index(args.cds, index_path, kmer_size, kallisto_exe=args.kallisto_exe)
