# Workstation subpackage
"""
Helpers for the cloud GPU workstation walkthrough.

Contains:
- gpu_info.py: nvidia-smi / torch device discovery, device fallback, seeding
- check_setup.py: readiness checklist for a newly provisioned machine
"""
