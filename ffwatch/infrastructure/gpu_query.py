import logging
import re
import shutil
import subprocess
from typing import List, Optional
from ffwatch.domain.models import GpuInfo

logger = logging.getLogger(__name__)

NVIDIA_SMI_QUERY = [
    "--query-gpu=utilization.memory,memory.total,name,pci.bus_id,driver_version",
    "--format=csv,noheader,nounits",
]

# Number parsing regex
NUM_RE = re.compile(r"(-?\d+(?:\.\d+)?)")

def parse_number(s: str) -> Optional[float]:
    """Parse number from string like '30', '24576', '[N/A]'."""
    if not s:
        return None
    s = str(s).strip()
    if s in {"N/A", "[N/A]", "--", "??"}:
        return None
    m = NUM_RE.search(s)
    return float(m.group(1)) if m else None


def parse_gpu_csv(text: str) -> List[GpuInfo]:
    """Parses nvidia-smi csv rows; short rows are skipped."""
    gpus: List[GpuInfo] = []
    for line in text.splitlines():
        fields = [f.strip() for f in line.split(",")]
        if len(fields) < 5:
            continue
        gpus.append(GpuInfo(
            used=int(parse_number(fields[0]) or 0),
            total=int(parse_number(fields[1]) or 0),
            name=fields[2],
            pci=fields[3],
            driver=fields[4],
        ))
    return gpus


def query_gpus(timeout: float = 5.0, nvidia_smi: str = "nvidia-smi") -> List[GpuInfo]:
    """Live GPU inventory; empty when nvidia-smi is missing or fails."""
    if shutil.which(nvidia_smi) is None:
        return []
    try:
        result = subprocess.run(
            [nvidia_smi, *NVIDIA_SMI_QUERY],
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.debug(f"GPU query: nvidia-smi failed: {e}")
        return []
    return parse_gpu_csv(result.stdout)
