import pytest

from jivaop.driver.stats import (
    UsageUnit,
    VolumeUsage,
    block_size_bytes,
    get_statistics,
    is_block_device,
)


def test_statistics_units_and_order(tmp_path):
    usage = get_statistics(tmp_path)
    assert [u.unit for u in usage] == [UsageUnit.BYTES, UsageUnit.INODES]


def test_statistics_invariants(tmp_path):
    in_bytes, in_inodes = get_statistics(str(tmp_path))
    assert 0 <= in_bytes.used <= in_bytes.total
    assert 0 <= in_bytes.available <= in_bytes.total
    assert in_inodes.used + in_inodes.available == in_inodes.total


def test_statistics_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_statistics(tmp_path / "missing")


def test_volume_usage_defaults():
    usage = VolumeUsage()
    assert (usage.available, usage.total, usage.used, usage.unit) == (0, 0, 0, UsageUnit.UNKNOWN)


def test_block_size_parses_output():
    calls = []

    def run(args):
        calls.append(list(args))
        return 0, "1073741824\n"

    assert block_size_bytes("/dev/sdb", run) == 1073741824
    assert calls == [["blockdev", "--getsize64", "/dev/sdb"]]


def test_block_size_command_failure():
    with pytest.raises(RuntimeError) as info:
        block_size_bytes("/dev/sdb", lambda args: (1, "no such device"))
    assert "no such device" in str(info.value)
    assert "/dev/sdb" in str(info.value)


@pytest.mark.parametrize("output", ["abc", "", "12.5", str(2**63)])
def test_block_size_bad_output(output):
    with pytest.raises(ValueError):
        block_size_bytes("/dev/sdb", lambda args: (0, output))


def test_regular_paths_are_not_block_devices(tmp_path):
    file_path = tmp_path / "f"
    file_path.write_text("x")
    assert is_block_device(tmp_path) is False
    assert is_block_device(file_path) is False


def test_is_block_device_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        is_block_device(tmp_path / "missing")