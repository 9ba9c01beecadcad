"""
GPU discovery for a freshly provisioned workstation.

Wraps `nvidia-smi` and torch's CUDA/MPS queries; `select_device` is the
device fallback every command line in this repo goes through.
"""

import os
import random
import subprocess
from typing import Dict, List

import numpy as np
import torch


def convert_between_byte_units(x, src_units='b', dst_units='mb'):
    units = ['b', 'kb', 'mb', 'gb', 'tb']
    assert (src_units in units) and (dst_units in units)
    return x / float(2 ** (10 * (units.index(dst_units) - units.index(src_units))))


def _parse_number(field):
    """Leading number of a field like '35 %' or '2048 MiB'; None for '[N/A]'."""
    try:
        return float(field.split()[0])
    except (IndexError, ValueError):
        return None


def _parse_gigabytes(field):
    mb = _parse_number(field)
    return None if mb is None else convert_between_byte_units(mb, src_units='mb', dst_units='gb')


def get_gpu_information() -> List[Dict]:
    """Query utilization and memory of each GPU; [] when nvidia-smi is absent.

    Fields nvidia-smi cannot report ('[N/A]', '[Not Supported]') come back as None.
    """
    gpus = []
    try:
        out = subprocess.check_output([
            'nvidia-smi',
            '--query-gpu=name,utilization.gpu,memory.used,memory.total',
            '--format=csv,noheader']).decode('utf-8')
    except (OSError, subprocess.CalledProcessError):
        return gpus

    for i, line in enumerate(out.strip().splitlines()):
        if not line.strip():
            continue
        # the name itself may contain commas
        name, utilization_s, memory_s, total_memory_s = [s.strip() for s in line.rsplit(',', 3)]
        gpus.append({
            'gpu_id': i,
            'name': name,
            'gpu_utilization_in_percent': _parse_number(utilization_s),
            'gpu_memory_used_in_gigabytes': _parse_gigabytes(memory_s),
            'gpu_total_memory_in_gigabytes': _parse_gigabytes(total_memory_s),
        })
    return gpus


def get_total_num_gpus() -> int:
    try:
        out = subprocess.check_output(['nvidia-smi', '-L']).decode('utf-8')
    except (OSError, subprocess.CalledProcessError):
        return 0
    return len([line for line in out.strip().splitlines() if line.strip()])


def get_available_gpu(memory_threshold_in_gigabytes, utilization_threshold_in_percent):
    for g in get_gpu_information():
        if g['gpu_utilization_in_percent'] is None or g['gpu_memory_used_in_gigabytes'] is None:
            continue
        if (g['gpu_utilization_in_percent'] <= utilization_threshold_in_percent and
                g['gpu_memory_used_in_gigabytes'] <= memory_threshold_in_gigabytes):
            return g['gpu_id']
    return None


def torch_device_report() -> Dict:
    """What torch itself can see: versions, CUDA devices and MPS."""
    report = {
        'torch_version': torch.__version__,
        'cuda_available': torch.cuda.is_available(),
        'cuda_version': torch.version.cuda,
        'cudnn_version': torch.backends.cudnn.version() if torch.backends.cudnn.is_available() else None,
        'mps_available': torch.backends.mps.is_available(),
        'cuda_visible_devices': os.environ.get('CUDA_VISIBLE_DEVICES'),
        'devices': [],
    }
    if report['cuda_available']:
        for i in range(torch.cuda.device_count()):
            props = torch.cuda.get_device_properties(i)
            report['devices'].append({
                'index': i,
                'name': props.name,
                'total_memory_in_gigabytes': convert_between_byte_units(
                    props.total_memory, src_units='b', dst_units='gb'),
                'capability': f"{props.major}.{props.minor}",
            })
    return report


def select_device(preferred: str = 'cuda') -> str:
    """Return `preferred` if usable, otherwise fall back cuda -> mps -> cpu."""
    if preferred not in ('cuda', 'mps', 'cpu'):
        raise ValueError(f"Unknown device: {preferred}")
    if preferred == 'cuda' and torch.cuda.is_available():
        return 'cuda'
    if preferred in ('cuda', 'mps') and torch.backends.mps.is_available():
        if preferred == 'cuda':
            print("CUDA not available, falling back to MPS")
        return 'mps'
    if preferred != 'cpu':
        print(f"{preferred.upper()} not available, falling back to CPU")
    return 'cpu'


def set_seed(seed: int = 42):
    """Seed python, numpy and torch (including CUDA) for reproducibility."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
        torch.backends.cudnn.deterministic = True
