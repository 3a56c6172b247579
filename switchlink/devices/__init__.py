from switchlink.devices.base import BaseVendorApi
from switchlink.devices.leviton import LevitonApi, device_cache_key

__all__ = ["BaseVendorApi", "LevitonApi", "device_cache_key"]
