"""Tests for dhcpd.leases parsing"""
from datetime import datetime

import pytest
from hypothesis import given, strategies as st, settings as hyp_settings

from errors import LeaseFileUnreadable
from lease_parser import LeaseParser, active_leases, effective_state, parse_lease_lines
from settings_model import DhcpdLease, SettingsModel


LEASES = """\
# The format of this file is documented in the dhcpd.leases(5) manual page.
# This lease file was written by isc-dhcp-4.4.1

# authoring-byte-order entry is generated, DO NOT DELETE
authoring-byte-order little-endian;

server-duid "\\000\\001\\000\\001";

lease 192.168.1.100 {
  starts 4 2024/01/15 10:30:00;
  ends 4 2024/01/15 11:30:00;
  cltt 4 2024/01/15 10:30:00;
  binding state active;
  next binding state free;
  rewind binding state free;
  hardware ethernet 00:11:22:33:44:55;
  uid "\\001\\000\\021\\"3DU";
  client-hostname "laptop";
}
lease 192.168.1.101 {
  starts 4 2024/01/15 10:40:00;
  ends 4 2024/01/15 11:40:00;
  binding state active;
  hardware ethernet aa:bb:cc:dd:ee:ff;
}
lease 192.168.1.102 {
  starts 5 2024/01/16 08:00:00;
  ends 5 2024/01/16 09:00:00;
  binding state free;
  hardware ethernet 00:11:22:33:44:55;
  client-hostname "laptop-renamed";
}
"""


def test_one_entry_per_hardware_address_last_block_wins():
    leases = parse_lease_lines(LEASES.splitlines())

    assert set(leases) == {'00:11:22:33:44:55', 'aa:bb:cc:dd:ee:ff'}
    laptop = leases['00:11:22:33:44:55']
    assert laptop == DhcpdLease(
        ip_address='192.168.1.102',
        mac_address='00:11:22:33:44:55',
        device_name='laptop-renamed',
        lease_start='2024/01/16 08:00:00',
        lease_end='2024/01/16 09:00:00',
        lease_state='free',
    )


def test_next_binding_state_does_not_override_binding_state():
    leases = parse_lease_lines(LEASES.splitlines()[:22])
    assert leases['00:11:22:33:44:55'].lease_state == 'active'


def test_lease_without_hostname_has_no_device_name():
    leases = parse_lease_lines(LEASES.splitlines())
    assert leases['aa:bb:cc:dd:ee:ff'].device_name is None
    assert leases['aa:bb:cc:dd:ee:ff'].ip_address == '192.168.1.101'


def test_ends_never_keeps_end_unset():
    leases = parse_lease_lines([
        "lease 10.0.0.5 {",
        "  starts 1 2024/02/05 12:00:00;",
        "  ends never;",
        "  hardware ethernet 01:02:03:04:05:06;",
        "}",
    ])
    assert leases['01:02:03:04:05:06'].lease_end is None
    assert leases['01:02:03:04:05:06'].lease_start == '2024/02/05 12:00:00'


@given(blocks=st.lists(
    st.tuples(
        st.sampled_from(['00:00:00:00:00:01', '00:00:00:00:00:02', '00:00:00:00:00:03']),
        st.integers(min_value=1, max_value=254),
        st.sampled_from(['active', 'free', 'expired', 'abandoned']),
    ),
    min_size=1, max_size=15,
))
@hyp_settings(max_examples=100)
def test_consolidation_matches_last_block_per_address(blocks):
    """For any lease history, each address maps to its last block."""
    lines = []
    for mac, host, state in blocks:
        lines.extend([
            f"lease 10.0.0.{host} {{",
            f"  binding state {state};",
            f"  hardware ethernet {mac};",
            "}",
        ])

    leases = parse_lease_lines(lines)

    expected = {}
    for mac, host, state in blocks:
        expected[mac] = (f"10.0.0.{host}", state)
    assert {mac: (lease.ip_address, lease.lease_state) for mac, lease in leases.items()} == expected


def test_refresh_publishes_table(tmp_path):
    path = tmp_path / 'dhcpd.leases'
    path.write_text(LEASES)
    model = SettingsModel()

    LeaseParser(str(path)).refresh(model)

    assert len(model.get_dhcpd_leases()) == 2


def test_missing_file_is_unreadable_and_keeps_table(tmp_path):
    model = SettingsModel()
    previous = {'00:00:00:00:00:09': DhcpdLease(ip_address='10.0.0.9', mac_address='00:00:00:00:00:09')}
    model.set_dhcpd_leases(previous)

    with pytest.raises(LeaseFileUnreadable):
        LeaseParser(str(tmp_path / 'missing.leases')).refresh(model)

    assert model.get_dhcpd_leases() == previous


def test_effective_state():
    now = datetime(2024, 1, 15, 11, 0, 0)
    current = DhcpdLease(lease_end='2024/01/15 11:30:00', lease_state='active')
    lapsed = DhcpdLease(lease_end='2024/01/15 10:30:00', lease_state='active')
    freed = DhcpdLease(lease_end='2024/01/15 11:30:00', lease_state='free')

    assert effective_state(current, now) == 'active'
    assert effective_state(lapsed, now) == 'expired'
    assert effective_state(freed, now) == 'free'


def test_active_leases_filters_expired_and_free():
    now = datetime(2024, 1, 15, 11, 0, 0)
    leases = parse_lease_lines(LEASES.splitlines())

    active = active_leases(leases, now)

    assert [lease.mac_address for lease in active] == ['aa:bb:cc:dd:ee:ff']


def test_blocks_without_hardware_address_are_skipped():
    leases = parse_lease_lines([
        "lease 10.0.0.30 {",
        "  binding state free;",
        "}",
        "lease 10.0.0.31 {",
        "  binding state backup;",
        "}",
        "lease 10.0.0.32 {",
        "  binding state active;",
        "  hardware ethernet 00:00:00:00:00:32;",
        "}",
    ])
    assert list(leases) == ['00:00:00:00:00:32']
