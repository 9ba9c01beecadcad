"""
Readiness check for a newly provisioned GPU workstation
========================================================
Run right after the cloud machine boots to confirm it can train the
captioning and architecture-search models in this repo:
    - required Python packages are importable (with versions)
    - a CUDA GPU is visible to both nvidia-smi and torch
    - enough free disk for COCO (~20GB with cached features)

Usage:
    python -m workstation.check_setup
    python -m workstation.check_setup --min_disk_gb 50 --allow_cpu
"""

import sys
import shutil
import argparse
import platform
from importlib import metadata
from typing import Dict, List

from workstation.gpu_info import get_gpu_information, torch_device_report

# distribution name -> import name
REQUIRED_PACKAGES = {
    'torch': 'torch',
    'torchvision': 'torchvision',
    'timm': 'timm',
    'numpy': 'numpy',
    'pandas': 'pandas',
    'Pillow': 'PIL',
    'matplotlib': 'matplotlib',
    'tqdm': 'tqdm',
    'nltk': 'nltk',
    'rouge-score': 'rouge_score',
}


def _result(name: str, ok: bool, detail: str, required: bool = True) -> Dict:
    return {'name': name, 'ok': ok, 'detail': detail, 'required': required}


def check_packages(packages: Dict[str, str] = None) -> List[Dict]:
    results = []
    for dist_name in (packages or REQUIRED_PACKAGES):
        try:
            version = metadata.version(dist_name)
            results.append(_result(f"package:{dist_name}", True, version))
        except metadata.PackageNotFoundError:
            results.append(_result(f"package:{dist_name}", False, "not installed"))
    return results


def check_disk_space(path: str = '.', min_free_gb: float = 20.0) -> Dict:
    usage = shutil.disk_usage(path)
    free_gb = usage.free / float(2 ** 30)
    return _result('disk', free_gb >= min_free_gb,
                   f"{free_gb:.1f}GB free at {path} (need {min_free_gb:.0f}GB)")


def _describe_gpu(g: Dict) -> str:
    total = g['gpu_total_memory_in_gigabytes']
    return f"{g['name']} ({total:.1f}GB)" if total is not None else f"{g['name']} (memory N/A)"


def check_gpu(allow_cpu: bool = False) -> List[Dict]:
    gpus = get_gpu_information()
    report = torch_device_report()

    if gpus:
        detail = ', '.join(_describe_gpu(g) for g in gpus)
        smi = _result('nvidia-smi', True, detail, required=not allow_cpu)
    else:
        smi = _result('nvidia-smi', False, "no NVIDIA GPU or driver found", required=not allow_cpu)

    if report['cuda_available']:
        cuda = _result('torch.cuda', True,
                       f"CUDA {report['cuda_version']}, {len(report['devices'])} device(s)",
                       required=not allow_cpu)
    else:
        cuda = _result('torch.cuda', False,
                       f"torch {report['torch_version']} built without usable CUDA",
                       required=not allow_cpu)
    return [smi, cuda]


def run_checks(min_disk_gb: float = 20.0, allow_cpu: bool = False, path: str = '.') -> List[Dict]:
    results = [_result('python', sys.version_info >= (3, 8), platform.python_version())]
    results.extend(check_packages())
    results.extend(check_gpu(allow_cpu=allow_cpu))
    results.append(check_disk_space(path, min_disk_gb))
    return results


def print_report(results: List[Dict]) -> bool:
    """Print the checklist; True when every required check passed."""
    print("=" * 60)
    print("Workstation Readiness")
    print("=" * 60)
    for r in results:
        mark = "✓" if r['ok'] else ("✗" if r['required'] else "⚠")
        print(f"  {mark} {r['name']:<24} {r['detail']}")
    passed = all(r['ok'] for r in results if r['required'])
    print("=" * 60)
    print("Ready to train." if passed else "Fix the ✗ items above before training.")
    return passed


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Check a GPU workstation for training readiness')
    parser.add_argument('--min_disk_gb', type=float, default=20.0)
    parser.add_argument('--path', type=str, default='.')
    parser.add_argument('--allow_cpu', action='store_true',
                        help='Report missing GPUs as warnings instead of failures')
    args = parser.parse_args(argv)

    results = run_checks(args.min_disk_gb, args.allow_cpu, args.path)
    return 0 if print_report(results) else 1


if __name__ == '__main__':
    sys.exit(main())
