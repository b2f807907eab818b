import os
import subprocess
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
CLI_PATH = REPO_ROOT / 'flexquant' / 'flexquant'


def run_cli(*args, cwd=None):
    env = dict(os.environ)
    env['PYTHONPATH'] = os.pathsep.join([str(REPO_ROOT), env.get('PYTHONPATH', '')])
    return subprocess.run(
        [sys.executable, str(CLI_PATH)] + list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
        cwd=cwd,
    )


def test_help_command_exits_zero():
    out = run_cli('help')
    assert out.returncode == 0
    assert 'usage:' in out.stdout.lower()


def test_help_topic_quant_exits_zero():
    out = run_cli('help', 'quant')
    assert out.returncode == 0
    merged = (out.stdout + '\n' + out.stderr).lower()
    assert '--max_attempts' in merged
    assert '--bias' in merged


def test_unknown_argument_prints_usage_and_fails():
    out = run_cli('run', '--cds', 'cds.fa', '--k', '31', '--threads', '1', '--frobnicate')
    assert out.returncode != 0
    assert 'usage:' in out.stderr.lower()


def test_missing_required_argument_fails():
    out = run_cli('run', '--cds', 'cds.fa', '--k', '31')
    assert out.returncode != 0
    assert '--threads' in out.stderr


def test_missing_kallisto_is_fatal(tmp_path):
    out = run_cli('quant', '--k', '31', '--threads', '1', '--kallisto_exe', str(tmp_path / 'no_kallisto'),
                  cwd=str(tmp_path))
    assert out.returncode == 1
    assert out.stderr.startswith('Error: ')
    assert 'not installed or not in PATH' in out.stderr


def test_qc_without_quant_outputs_is_fatal(tmp_path):
    out = run_cli('qc', '--k', '31', '--work_dir', str(tmp_path / 'kallisto'))
    assert out.returncode == 1
    assert 'Error: Quantification directory not found' in out.stderr
