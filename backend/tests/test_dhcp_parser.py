"""Tests for dhcpd.conf parsing and rendering"""
import os

import pytest
from hypothesis import given, strategies as st, settings as hyp_settings

from dhcp_parser import (DHCPParser, CONFIG_HEADER, create_config, load_config_lines,
                         parse_config_lines, validate_hostname, validate_mac_address,
                         validate_netmask, validate_static_lease)
from errors import MalformedDirective, RequiredFileMissing
from settings_model import SettingsModel, StaticLease


SAMPLE_CONFIG = """\
# dhcpd.conf
default-lease-time 600;
max-lease-time 7200;
option subnet-mask 255.255.255.0;

subnet 192.168.1.0 netmask 255.255.255.0 {
    range 192.168.1.100   192.168.1.200;
    option routers 192.168.1.1;
    option domain-name-servers 8.8.8.8, 8.8.4.4;

    host printer {
        hardware ethernet 00:11:22:33:44:55;
        fixed-address 192.168.1.10;
    }
\thost\tnas {
\t\thardware   ethernet aa:bb:cc:dd:ee:ff;
\t\tfixed-address 192.168.1.11;
\t}
    host camera {
        hardware ethernet 66:77:88:99:aa:bb;
        fixed-address 192.168.1.12;
    }
}
"""


def test_parses_all_recognised_directives():
    values, leases = parse_config_lines(SAMPLE_CONFIG.splitlines())

    assert values == {
        'default_lease_time': 600,
        'max_lease_time': 7200,
        'host_subnet_mask': '255.255.255.0',
        'subnet': '192.168.1.0',
        'subnet_mask': '255.255.255.0',
        'ip_range_start': '192.168.1.100',
        'ip_range_end': '192.168.1.200',
        'gateway': '192.168.1.1',
        'primary_dns': '8.8.8.8',
        'secondary_dns': '8.8.4.4',
    }
    assert [lease.device_name for lease in leases] == ['printer', 'nas', 'camera']
    assert leases[1].mac_address == 'aa:bb:cc:dd:ee:ff'
    assert leases[1].ip_address == '192.168.1.11'


def test_static_lease_ids_follow_file_order():
    _, leases = parse_config_lines(SAMPLE_CONFIG.splitlines())
    assert [lease.id for lease in leases] == ['1', '2', '3']


def test_load_replaces_static_leases():
    model = SettingsModel()
    model.add_static_lease(StaticLease(device_name='old', mac_address='01:01:01:01:01:01', ip_address='10.0.0.9'))

    load_config_lines(SAMPLE_CONFIG.splitlines(), model)

    assert [lease.device_name for lease in model.get_static_leases()] == ['printer', 'nas', 'camera']


def test_unparsable_lease_time_keeps_previous_value():
    model = SettingsModel()
    model.default_lease_time = 900

    load_config_lines(["default-lease-time abc;", "max-lease-time 3600;"], model)

    assert model.default_lease_time == 900
    assert model.max_lease_time == 3600


def test_unparsable_addresses_are_skipped():
    model = SettingsModel()
    model.gateway = '10.0.0.1'
    lines = [
        "subnet 10.0.0.0 netmask not-a-mask {",
        "range 10.0.0.50 10.0.0.300;",
        "option routers gateway.local;",
        "}",
    ]

    load_config_lines(lines, model)

    assert model.subnet == '10.0.0.0'
    assert model.subnet_mask is None
    assert model.ip_range_start == '10.0.0.50'
    assert model.ip_range_end is None
    assert model.gateway == '10.0.0.1'


def test_single_dns_server_leaves_secondary_unset():
    values, _ = parse_config_lines(["option domain-name-servers 1.1.1.1;"])
    assert values == {'primary_dns': '1.1.1.1'}


def test_unknown_lines_are_ignored():
    values, leases = parse_config_lines([
        "authoritative;",
        "ddns-update-style none;",
        "hostname-prefix foo;",
        "options nothing;",
        "log-facility local7;",
    ])
    assert values == {}
    assert leases == []


@pytest.mark.parametrize("line", [
    "hardware ethernet 00:11:22:33:44:55;",
    "fixed-address 10.0.0.5;",
])
def test_host_field_outside_host_block_is_malformed(line):
    with pytest.raises(MalformedDirective) as excinfo:
        parse_config_lines(["default-lease-time 600;", line])

    assert excinfo.value.line_number == 2
    assert excinfo.value.line == line


def test_malformed_file_leaves_model_untouched():
    model = SettingsModel()
    model.add_static_lease(StaticLease(device_name='keep', mac_address='01:02:03:04:05:06', ip_address='10.0.0.2'))

    with pytest.raises(MalformedDirective):
        load_config_lines(["default-lease-time 300;", "fixed-address 10.0.0.5;"], model)

    assert model.default_lease_time == 600
    assert [lease.device_name for lease in model.get_static_leases()] == ['keep']


def test_closing_brace_on_field_line_closes_host():
    _, leases = parse_config_lines([
        "host a {",
        "hardware ethernet 00:00:00:00:00:01;",
        "fixed-address 10.0.0.1; }",
        "host b {",
        "}",
    ])
    assert [(lease.id, lease.device_name, lease.ip_address) for lease in leases] == [
        ('1', 'a', '10.0.0.1'),
        ('2', 'b', ''),
    ]


def test_comment_braces_do_not_close_host():
    _, leases = parse_config_lines([
        "host a {",
        "# }",
        "hardware ethernet 00:00:00:00:00:01;",
        "}",
    ])
    assert leases[0].mac_address == '00:00:00:00:00:01'


def test_minimal_config_has_only_globals():
    model = SettingsModel(default_lease_time=300, max_lease_time=900)

    content = create_config(model)

    assert content.splitlines() == [
        CONFIG_HEADER,
        "one-lease-per-client true;",
        "update-static-leases true;",
        "default-lease-time 300;",
        "max-lease-time 900;",
    ]


def test_subnet_block_requires_subnet_and_mask():
    model = SettingsModel()
    model.subnet = '10.0.0.0'
    model.ip_range_start = '10.0.0.10'
    model.ip_range_end = '10.0.0.20'

    assert 'subnet' not in create_config(model)

    model.subnet_mask = '255.255.255.0'
    content = create_config(model)
    assert "subnet 10.0.0.0 netmask 255.255.255.0 {" in content
    assert "    range 10.0.0.10 10.0.0.20;" in content
    assert 'routers' not in content
    assert 'domain-name-servers' not in content


def test_host_blocks_rendered_inside_subnet_in_order():
    model = SettingsModel()
    model.subnet = '10.0.0.0'
    model.subnet_mask = '255.255.255.0'
    model.ip_range_start = '10.0.0.10'
    model.ip_range_end = '10.0.0.20'
    model.primary_dns = '10.0.0.1'
    model.add_static_lease(StaticLease(device_name='one', mac_address='00:00:00:00:00:01', ip_address='10.0.0.2'))
    model.add_static_lease(StaticLease(device_name='two', mac_address='00:00:00:00:00:02', ip_address='10.0.0.3'))

    lines = create_config(model).splitlines()

    assert "    option domain-name-servers 10.0.0.1;" in lines
    assert lines.index("    host one {") < lines.index("    host two {") < lines.index("}")
    assert lines[-1] == "}"


# Strategies
ipv4_octets = st.integers(min_value=0, max_value=255)
ipv4_addresses = st.tuples(ipv4_octets, ipv4_octets, ipv4_octets, ipv4_octets).map(
    lambda t: f"{t[0]}.{t[1]}.{t[2]}.{t[3]}"
)
netmasks = st.sampled_from(["255.255.255.0", "255.255.0.0", "255.0.0.0", "255.255.255.128"])
hostnames = st.text(min_size=1, max_size=20, alphabet='abcdefghijklmnopqrstuvwxyz0123456789-')
mac_addresses = st.tuples(
    *[st.integers(min_value=0, max_value=255) for _ in range(6)]
).map(lambda t: ":".join(f"{x:02x}" for x in t))
lease_times = st.integers(min_value=1, max_value=10 ** 7)


@given(
    default_lease_time=lease_times,
    max_lease_time=lease_times,
    subnet=ipv4_addresses,
    subnet_mask=netmasks,
    range_start=ipv4_addresses,
    range_end=ipv4_addresses,
    gateway=ipv4_addresses,
    primary_dns=ipv4_addresses,
    secondary_dns=ipv4_addresses,
    host_subnet_mask=netmasks,
    hosts=st.lists(st.tuples(hostnames, mac_addresses, ipv4_addresses), min_size=1, max_size=5),
)
@hyp_settings(max_examples=100)
def test_config_roundtrip(default_lease_time, max_lease_time, subnet, subnet_mask, range_start,
                          range_end, gateway, primary_dns, secondary_dns, host_subnet_mask, hosts):
    """Rendering settings and parsing the result reproduces the settings."""
    original = SettingsModel(default_lease_time, max_lease_time)
    original.subnet = subnet
    original.subnet_mask = subnet_mask
    original.ip_range_start = range_start
    original.ip_range_end = range_end
    original.gateway = gateway
    original.primary_dns = primary_dns
    original.secondary_dns = secondary_dns
    original.host_subnet_mask = host_subnet_mask
    for name, mac, ip in hosts:
        original.add_static_lease(StaticLease(device_name=name, mac_address=mac, ip_address=ip))

    parsed = SettingsModel(default_lease_time=1, max_lease_time=1)
    load_config_lines(create_config(original).splitlines(), parsed)

    for field in SettingsModel.EDITABLE_FIELDS:
        assert getattr(parsed, field) == getattr(original, field), field
    assert parsed.get_static_leases() == original.get_static_leases()


@given(token=st.text(min_size=1, max_size=10, alphabet='abcxyz-_.!'))
@hyp_settings(max_examples=50)
def test_non_numeric_lease_time_is_ignored(token):
    """Any non-numeric lease time leaves the current value in place."""
    model = SettingsModel(default_lease_time=1234)
    load_config_lines([f"default-lease-time {token};"], model)
    assert model.default_lease_time == 1234


def test_write_and_load_config_file(tmp_path):
    path = tmp_path / 'dhcpd.conf'
    parser = DHCPParser(str(path))
    model = SettingsModel(default_lease_time=120, max_lease_time=240)
    model.subnet = '172.16.0.0'
    model.subnet_mask = '255.255.0.0'
    model.ip_range_start = '172.16.0.10'
    model.ip_range_end = '172.16.0.99'

    parser.save(model)
    loaded = SettingsModel()
    parser.load(loaded)

    assert path.read_text() == create_config(model)
    assert loaded.default_lease_time == 120
    assert loaded.subnet_mask == '255.255.0.0'
    assert not [name for name in os.listdir(tmp_path) if name.endswith('.tmp')]


def test_read_missing_config_raises_required_file_missing(tmp_path):
    parser = DHCPParser(str(tmp_path / 'missing.conf'))
    with pytest.raises(RequiredFileMissing):
        parser.read_config()


def test_create_backup_copies_current_file(tmp_path):
    path = tmp_path / 'dhcpd.conf'
    path.write_text("default-lease-time 600;\n")
    parser = DHCPParser(str(path), backup_dir=str(tmp_path / 'backups'))

    backup = parser.create_backup()

    assert backup is not None
    with open(backup) as f:
        assert f.read() == "default-lease-time 600;\n"


def test_validate_config_reports_duplicate_macs():
    model = SettingsModel()
    model.add_static_lease(StaticLease(device_name='a', mac_address='00:00:00:00:00:01', ip_address='10.0.0.2'))
    model.add_static_lease(StaticLease(device_name='b', mac_address='00:00:00:00:00:01', ip_address='10.0.0.3'))

    is_valid, message = DHCPParser().validate_config(model)

    assert not is_valid
    assert 'MAC' in message


def test_validate_config_accepts_clean_settings():
    is_valid, _ = DHCPParser().validate_config(SettingsModel())
    assert is_valid


@pytest.mark.parametrize("hostname,valid", [
    ('printer', True),
    ('nas-01.lan', True),
    ('living room tv', False),
    ('pc}', False),
    ('pc;', False),
    ('-leading', False),
    ('', False),
])
def test_validate_hostname(hostname, valid):
    assert validate_hostname(hostname) is valid


def test_validate_mac_and_netmask():
    assert validate_mac_address('00:11:22:aa:BB:ff')
    assert not validate_mac_address('00:11:22:33:44')
    assert validate_netmask('255.255.255.128')
    assert not validate_netmask('255.0.255.0')


@pytest.mark.parametrize("device_name", ['living room tv', 'pc}'])
def test_invalid_static_lease_rejected_before_rendering(device_name):
    with pytest.raises(ValueError):
        validate_static_lease(device_name, '00:11:22:33:44:55', '10.0.0.5')


def test_validate_config_reports_unparsable_hostname():
    model = SettingsModel()
    model.add_static_lease(StaticLease(device_name='pc}', mac_address='00:00:00:00:00:01', ip_address='10.0.0.2'))

    is_valid, message = DHCPParser().validate_config(model)

    assert not is_valid
    assert 'hostname' in message
