import json
import os
import subprocess

import pandas
import pytest


def write_quant_outputs(output_dir, run_info=None, tpm=(0.0, 5.2, 3.1)):
    """Write kallisto-like run_info.json and abundance.tsv into output_dir."""
    os.makedirs(output_dir, exist_ok=True)
    if run_info is None:
        run_info = {'n_processed': 1000000, 'n_pseudoaligned': 850000, 'p_pseudoaligned': 0.85}
    with open(os.path.join(output_dir, 'run_info.json'), 'w') as f:
        json.dump(run_info, f)
    df = pandas.DataFrame({
        'target_id': ['tx{}'.format(i + 1) for i in range(len(tpm))],
        'length': [1000] * len(tpm),
        'eff_length': [850.0] * len(tpm),
        'est_counts': [t * 10 for t in tpm],
        'tpm': list(tpm),
    })
    df.to_csv(os.path.join(output_dir, 'abundance.tsv'), sep='\t', index=False)


class FakeKallisto:
    """Stand-in for subprocess.run that emulates `kallisto version|index|quant`.

    quant_returncodes maps a sample name to the exit codes of its successive
    quant calls; the last code repeats once the list is exhausted.
    """

    def __init__(self, quant_returncodes=None, index_returncode=0, write_index=True):
        self.quant_returncodes = quant_returncodes or dict()
        self.index_returncode = index_returncode
        self.write_index = write_index
        self.calls = list()

    def __call__(self, cmd, stdout=None, stderr=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        subcommand = cmd[1]
        if subcommand == 'version':
            return subprocess.CompletedProcess(cmd, 0, stdout=b'kallisto, version 0.50.1\n', stderr=b'')
        if subcommand == 'index':
            index_path = cmd[cmd.index('-i') + 1]
            if (self.index_returncode == 0) and self.write_index:
                with open(index_path, 'w') as f:
                    f.write('index')
            return subprocess.CompletedProcess(cmd, self.index_returncode, stdout=b'', stderr=b'[build] done\n')
        if subcommand == 'quant':
            output_dir = cmd[cmd.index('-o') + 1]
            sample_name = os.path.basename(output_dir)
            num_previous = len(self.quant_calls(sample_name)) - 1
            codes = self.quant_returncodes.get(sample_name, [0])
            returncode = codes[min(num_previous, len(codes) - 1)]
            os.makedirs(output_dir, exist_ok=True)
            if returncode == 0:
                write_quant_outputs(output_dir)
            txt = '[quant] {} attempt {} exit {}\n'.format(sample_name, num_previous + 1, returncode)
            return subprocess.CompletedProcess(cmd, returncode, stdout=txt.encode('utf8'), stderr=None)
        raise AssertionError('Unexpected command: {}'.format(cmd))

    def quant_calls(self, sample_name=None):
        out = list()
        for cmd in self.calls:
            if cmd[1] != 'quant':
                continue
            if (sample_name is None) or (os.path.basename(cmd[cmd.index('-o') + 1]) == sample_name):
                out.append(cmd)
        return out


@pytest.fixture
def fake_kallisto(monkeypatch):
    """Install a FakeKallisto as subprocess.run. Call with FakeKallisto kwargs."""
    def install(**kwargs):
        fk = FakeKallisto(**kwargs)
        monkeypatch.setattr(subprocess, 'run', fk)
        return fk
    return install


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = list()
    monkeypatch.setattr('flexquant.quant.time.sleep', lambda seconds: sleeps.append(seconds))
    return sleeps


@pytest.fixture
def fastq_dir(tmp_path):
    """Directory with two complete pairs and one sample missing its R2 file."""
    d = tmp_path / 'fastq'
    d.mkdir()
    for name in ['sampleA_R1.fastq.gz', 'sampleA_R2.fastq.gz',
                 'sampleB_R1.fastq.gz', 'sampleB_R2.fastq.gz',
                 'lonely_R1.fastq.gz']:
        (d / name).write_bytes(b'')
    return d


@pytest.fixture
def cds_file(tmp_path):
    path = tmp_path / 'cds.fasta'
    path.write_text(
        '>gene1 long record\n'
        'ATGCATGCAT\n'
        'GCATGCATGC\n'
        '>gene2 too short\n'
        'ATGC\n'
        '>gene3 with ambiguity codes\n'
        'ATGCRYATGCATGCATGCATGCAT\n'
    )
    return path
