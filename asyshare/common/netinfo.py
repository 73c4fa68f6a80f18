import socket
from typing import Dict, List

import psutil


def get_local_ips() -> List[Dict[str, str]]:
	"""
	Candidate listen addresses: loopback and wildcard first, then the IPv4
	address of every interface that is up and not a loopback.
	"""
	ips = [
		{'ip': '127.0.0.1', 'name': 'local'},
		{'ip': '0.0.0.0', 'name': 'all interfaces'},
	]
	seen = set(x['ip'] for x in ips)

	try:
		addresses = psutil.net_if_addrs()
		stats = psutil.net_if_stats()
	except OSError:
		return ips

	for interface, addrs in addresses.items():
		ifstat = stats.get(interface)
		if ifstat is None or not ifstat.isup:
			continue
		for addr in addrs:
			if addr.family != socket.AF_INET:
				continue
			if addr.address.startswith('127.'):
				continue
			if addr.address in seen:
				continue
			seen.add(addr.address)
			ips.append({'ip': addr.address, 'name': interface})
	return ips
