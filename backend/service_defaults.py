"""
Service Defaults Rewriter
Selects the interface isc-dhcp-server binds to in /etc/default/isc-dhcp-server
"""

import logging
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULTS_HEADER = "# /etc/default/isc-dhcp-server modified by isc-dhcp-sync"


def interfaces_line(interface_name: str) -> str:
    return f'INTERFACES="{interface_name}"'


def rewrite_interfaces(lines: Iterable[str], interface_name: str) -> List[str]:
    """
    Point INTERFACES at the given interface

    Lines starting with INTERFACES or #INTERFACES (after trimming) are
    replaced; every other line is kept verbatim.

    Args:
        lines: Current content of the defaults file
        interface_name: Interface identifier, e.g. eth0

    Returns:
        New content, header comment first
    """
    new_lines = [DEFAULTS_HEADER]
    replaced = 0
    for line in lines:
        trimmed = line.strip()
        if trimmed.startswith('INTERFACES') or trimmed.startswith('#INTERFACES'):
            new_lines.append(interfaces_line(interface_name))
            replaced += 1
        else:
            new_lines.append(line)

    logger.debug(f"Rewrote {replaced} INTERFACES line(s) for {interface_name}")
    return new_lines


def read_selected_interface(lines: Iterable[str]) -> Optional[str]:
    """Interface named by the first active INTERFACES assignment"""
    for line in lines:
        trimmed = line.strip()
        if trimmed.startswith('INTERFACES='):
            names = trimmed[len('INTERFACES='):].strip().strip('"').strip("'").split()
            # isc-dhcp-server accepts a space separated list, the first one is used here
            return names[0] if names else None
    return None
