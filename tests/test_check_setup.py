from workstation import check_setup


def _no_gpu(monkeypatch):
    monkeypatch.setattr(check_setup, 'get_gpu_information', lambda: [])
    monkeypatch.setattr(check_setup, 'torch_device_report', lambda: {
        'torch_version': '2.0', 'cuda_available': False, 'cuda_version': None, 'devices': []})


def test_check_packages_reports_missing():
    results = check_setup.check_packages({'torch': 'torch', 'definitely-not-a-real-dist-xyz': 'xyz'})
    by_name = {r['name']: r for r in results}

    assert by_name['package:torch']['ok']
    assert not by_name['package:definitely-not-a-real-dist-xyz']['ok']


def test_disk_space_threshold(tmp_path):
    assert check_setup.check_disk_space(str(tmp_path), min_free_gb=0)['ok']
    assert not check_setup.check_disk_space(str(tmp_path), min_free_gb=10 ** 9)['ok']


def test_missing_gpu_is_required_unless_allowed(monkeypatch):
    _no_gpu(monkeypatch)

    strict = check_setup.check_gpu(allow_cpu=False)
    assert all(not r['ok'] and r['required'] for r in strict)

    relaxed = check_setup.check_gpu(allow_cpu=True)
    assert all(not r['required'] for r in relaxed)


def test_gpu_without_reported_memory(monkeypatch):
    monkeypatch.setattr(check_setup, 'get_gpu_information', lambda: [{
        'gpu_id': 0, 'name': 'Tesla T4', 'gpu_utilization_in_percent': None,
        'gpu_memory_used_in_gigabytes': None, 'gpu_total_memory_in_gigabytes': None}])
    monkeypatch.setattr(check_setup, 'torch_device_report', lambda: {
        'torch_version': '2.0', 'cuda_available': True, 'cuda_version': '12.1', 'devices': [{}]})

    smi, cuda = check_setup.check_gpu()
    assert smi['ok'] and cuda['ok']
    assert smi['detail'] == 'Tesla T4 (memory N/A)'


def test_main_exit_status(monkeypatch, tmp_path):
    _no_gpu(monkeypatch)
    monkeypatch.setattr(check_setup, 'check_packages', lambda packages=None: [])

    assert check_setup.main(['--allow_cpu', '--min_disk_gb', '0', '--path', str(tmp_path)]) == 0
    assert check_setup.main(['--min_disk_gb', '0', '--path', str(tmp_path)]) == 1


def test_print_report_ignores_optional_failures():
    results = [
        {'name': 'a', 'ok': True, 'detail': '', 'required': True},
        {'name': 'b', 'ok': False, 'detail': '', 'required': False},
    ]
    assert check_setup.print_report(results)
