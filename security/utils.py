"""
Device and IP bookkeeping used by the fraud probes
"""
import hashlib
import ipaddress
import json
import logging
from typing import Dict, Optional

from django.core.cache import cache
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from users.engine_settings import engine_setting

logger = logging.getLogger(__name__)

IP_REPUTATION_CACHE_SECONDS = 86400


def calculate_device_fingerprint(fingerprint_data: Dict) -> str:
    """Calculate a unique hash for device fingerprint"""
    # A stable device id wins over the full attribute set
    if isinstance(fingerprint_data, dict) and fingerprint_data.get('device_id'):
        return hashlib.sha256(str(fingerprint_data['device_id']).encode()).hexdigest()

    sorted_data = json.dumps(fingerprint_data, sort_keys=True, default=str)
    return hashlib.sha256(sorted_data.encode()).hexdigest()


def check_ip_reputation(ip_address: str) -> Dict:
    """
    Classify an IP address.
    Returns dict with is_vpn, is_tor, is_datacenter, is_proxy, is_private flags
    """
    cache_key = f"ip_reputation_{ip_address}"
    cached_result = cache.get(cache_key)
    if cached_result:
        return cached_result

    result = {
        'is_vpn': False,
        'is_tor': False,
        'is_datacenter': False,
        'is_proxy': False,
        'is_private': False,
    }

    try:
        parsed = ipaddress.ip_address(ip_address)
    except ValueError:
        logger.warning(f"Unparseable IP address in reputation check: {ip_address}")
        result['is_proxy'] = True
        return result

    if parsed.is_private or parsed.is_loopback or parsed.is_reserved:
        # Internal ranges should never reach a public share endpoint directly
        result['is_private'] = True
        result['is_datacenter'] = True

    if any(ip_address.startswith(prefix) for prefix in engine_setting('KNOWN_PROXY_PREFIXES') if prefix):
        result['is_proxy'] = True
        result['is_vpn'] = True

    # Merge flags recorded by ops on the stored IP row
    from .models import IPAddress
    stored = IPAddress.objects.filter(ip_address=ip_address).only(
        'is_vpn', 'is_tor', 'is_datacenter', 'is_blocked'
    ).first()
    if stored:
        result['is_vpn'] = result['is_vpn'] or stored.is_vpn
        result['is_tor'] = stored.is_tor
        result['is_datacenter'] = result['is_datacenter'] or stored.is_datacenter
        result['is_proxy'] = result['is_proxy'] or stored.is_blocked

    cache.set(cache_key, result, IP_REPUTATION_CACHE_SECONDS)
    return result


def record_device_usage(user, fingerprint: str, device_info: Dict, ip_address: Optional[str],
                        country: str = '', now=None):
    """
    Create or refresh the device and IP associations for ``user``.
    Keeps ``total_users`` on both rows in step with the link tables.
    """
    from .models import DeviceFingerprint, IPAddress, UserDevice, UserIPAddress

    now = now or timezone.now()
    device = None
    ip_obj = None

    with transaction.atomic():
        if fingerprint:
            device, _ = DeviceFingerprint.objects.get_or_create(
                fingerprint=fingerprint,
                defaults={'device_details': device_info or {}, 'first_seen': now, 'last_seen': now},
            )
            link, link_created = UserDevice.objects.get_or_create(
                user=user,
                device=device,
                defaults={'first_used': now, 'last_used': now},
            )
            if not link_created:
                UserDevice.objects.filter(pk=link.pk).update(
                    last_used=now, total_sessions=F('total_sessions') + 1
                )
            DeviceFingerprint.objects.filter(pk=device.pk).update(
                last_seen=now,
                device_details=device_info or device.device_details,
                total_users=UserDevice.objects.filter(device=device).count(),
            )

        if ip_address:
            ip_obj, _ = IPAddress.objects.get_or_create(
                ip_address=ip_address,
                defaults={'country_code': country, 'first_seen': now, 'last_seen': now},
            )
            ip_link, ip_link_created = UserIPAddress.objects.get_or_create(
                user=user,
                ip_address=ip_obj,
                defaults={'country_code': country, 'first_seen': now, 'last_seen': now},
            )
            if not ip_link_created:
                UserIPAddress.objects.filter(pk=ip_link.pk).update(
                    last_seen=now, total_sessions=F('total_sessions') + 1
                )
            IPAddress.objects.filter(pk=ip_obj.pk).update(
                last_seen=now,
                total_users=UserIPAddress.objects.filter(ip_address=ip_obj).count(),
            )

    logger.info(
        f"Device usage tracked for user {user.pk}: "
        f"fingerprint={(fingerprint or '')[:10]}..., ip={ip_address}"
    )
    return {'device': device, 'ip_address': ip_obj}


def device_user_count(fingerprint: str) -> int:
    from .models import UserDevice

    if not fingerprint:
        return 0
    return UserDevice.objects.filter(device__fingerprint=fingerprint).values('user').distinct().count()


def ip_user_count(ip_address: str) -> int:
    from .models import UserIPAddress

    if not ip_address:
        return 0
    return UserIPAddress.objects.filter(ip_address__ip_address=ip_address).values('user').distinct().count()
