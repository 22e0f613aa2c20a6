import sys
from pathlib import Path

import pytest

from polyphonia.external import ExternalCommandError, ensure_executable_in_path, run_command


def test_stdout_can_be_streamed_to_a_file(tmp_path: Path):
    out = tmp_path / "out.txt"
    cp = run_command([sys.executable, "-c", "print('ref\\t1\\t30')"], stdout_path=out)
    assert cp.returncode == 0
    assert cp.stdout is None
    assert out.read_text(encoding="utf-8") == "ref\t1\t30\n"


def test_failure_names_command_and_stderr():
    script = "import sys; sys.stderr.write('bad input'); sys.exit(3)"
    with pytest.raises(ExternalCommandError) as exc:
        run_command([sys.executable, "-c", script])
    err = exc.value
    assert err.returncode == 3
    assert "bad input" in str(err)
    assert "exit code 3" in str(err)

    cp = run_command([sys.executable, "-c", script], check=False)
    assert cp.returncode == 3
    assert cp.stderr == "bad input"


def test_missing_executable_carries_hint():
    with pytest.raises(FileNotFoundError, match="install me"):
        ensure_executable_in_path("polyphonia-no-such-tool", hint="install me")
