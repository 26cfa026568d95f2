import subprocess
from unittest.mock import patch, MagicMock
from ffwatch.infrastructure.gpu_query import NVIDIA_SMI_QUERY, parse_gpu_csv, parse_number, query_gpus

SMI_OUTPUT = """\
12, 24576, NVIDIA GeForce RTX 4090, 00000000:01:00.0, 550.54.14
[N/A], 16376, NVIDIA RTX A4000, 00000000:02:00.0, 550.54.14
"""

def test_parse_number():
    assert parse_number("30") == 30.0
    assert parse_number(" 24576 ") == 24576.0
    assert parse_number("[N/A]") is None
    assert parse_number("") is None

def test_parse_gpu_csv():
    gpus = parse_gpu_csv(SMI_OUTPUT)
    assert len(gpus) == 2
    assert gpus[0].name == "NVIDIA GeForce RTX 4090"
    assert gpus[0].used == 12
    assert gpus[0].total == 24576
    assert gpus[0].pci == "00000000:01:00.0"
    assert gpus[0].driver == "550.54.14"
    assert gpus[1].used == 0

def test_parse_gpu_csv_skips_short_rows():
    assert parse_gpu_csv("No devices were found\n") == []

def test_query_without_nvidia_smi():
    with patch("shutil.which", return_value=None), patch("subprocess.run") as mock_run:
        assert query_gpus() == []
        mock_run.assert_not_called()

def test_query_success():
    with patch("shutil.which", return_value="/usr/bin/nvidia-smi"), patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(stdout=SMI_OUTPUT)
        gpus = query_gpus(timeout=2.0)
        assert [g.name for g in gpus] == ["NVIDIA GeForce RTX 4090", "NVIDIA RTX A4000"]
        cmd = mock_run.call_args.args[0]
        assert cmd == ["nvidia-smi", *NVIDIA_SMI_QUERY]
        assert mock_run.call_args.kwargs["timeout"] == 2.0

def test_query_failure_is_empty():
    with patch("shutil.which", return_value="/usr/bin/nvidia-smi"), \
         patch("subprocess.run", side_effect=subprocess.CalledProcessError(9, "nvidia-smi")):
        assert query_gpus() == []

def test_query_timeout_is_empty():
    with patch("shutil.which", return_value="/usr/bin/nvidia-smi"), \
         patch("subprocess.run", side_effect=subprocess.TimeoutExpired("nvidia-smi", 5)):
        assert query_gpus() == []
