"""
Leviton cloud API for smart switches and dimmers.

Device status reads are cached for a couple of seconds so that a burst of
characteristic reads from the home automation host collapses into a single
upstream call. Writes always reach the API and drop the cached status.
"""

from typing import Any

from loguru import logger

from switchlink.devices.base import BaseVendorApi
from switchlink.sanitizers import mask_token
from switchlink.services.client import ServiceClient
from switchlink.services.errors import (
    AuthenticationError,
    DeviceNotFoundError,
    UpstreamResponseError,
    ValidationError,
)
from switchlink.services.request_queue import Priority
from switchlink.validators import (
    validate_brightness,
    validate_device_id,
    validate_email,
    validate_password,
    validate_power_state,
    validate_token,
)


def device_cache_key(device_id: str) -> str:
    return f"device:{device_id}"


class LevitonApi(BaseVendorApi):
    """
    Leviton "My Leviton" cloud API.

    Usage:
        api = LevitonApi(client, email, password)
        session = await api.login()
        devices = await api.get_devices(residence_id, session["id"])
        await api.set_power(devices[0]["id"], session["id"], True)
    """

    SERVICE_ID = "leviton"

    def __init__(
        self,
        client: ServiceClient,
        email: str = "",
        password: str = "",
        use_cache: bool = True,
    ):
        super().__init__(client)
        self.email = email
        self.password = password
        self.use_cache = use_cache

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return bool(self.email and self.password)

    async def login(self) -> dict[str, Any]:
        """
        Authenticate and return the session (``id`` is the token).

        Login bypasses the circuit breaker so that a tripped breaker never
        locks the plugin out of re-authenticating.
        """
        email = validate_email(self.email)
        password = validate_password(self.password)

        logger.info(f"Authenticating {email}")
        response = await self.client.request(
            "POST",
            "/Person/login",
            params={"include": "user"},
            json_data={"email": email, "password": password},
            bypass_circuit_breaker=True,
            priority=Priority.HIGH,
        )

        if not isinstance(response, dict) or not response.get("id") or not response.get("userId"):
            raise AuthenticationError("Invalid login response: missing token or userId")

        logger.info(f"Login succeeded, token: {mask_token(str(response['id']))}")
        return response

    async def _get(self, path: str, token: str, **kwargs: Any) -> Any:
        return await self.client.request(
            "GET",
            path,
            headers={"Authorization": validate_token(token)},
            **kwargs,
        )

    async def get_residential_permissions(self, person_id: str | int, token: str) -> Any:
        person = validate_device_id(person_id, field="personId")
        return await self._get(f"/Person/{person}/residentialPermissions", token)

    async def get_residential_account(self, account_id: str | int, token: str) -> Any:
        account = validate_device_id(account_id, field="accountId")
        return await self._get(f"/ResidentialAccounts/{account}", token)

    async def get_residences(self, account_id: str | int, token: str) -> Any:
        account = validate_device_id(account_id, field="accountId")
        return await self._get(f"/ResidentialAccounts/{account}/residences", token)

    async def get_devices(self, residence_id: str | int, token: str) -> Any:
        """List the IoT switches of a residence."""
        residence = validate_device_id(residence_id, field="residenceId")
        return await self._get(f"/Residences/{residence}/iotSwitches", token)

    async def get_device_status(self, device_id: str | int, token: str) -> Any:
        """
        Current state of one switch.

        Raises:
            DeviceNotFoundError: If the API does not know the device
        """
        device = validate_device_id(device_id)
        try:
            return await self._get(
                f"/IotSwitches/{device}",
                token,
                use_cache=self.use_cache,
                cache_key=device_cache_key(device),
            )
        except UpstreamResponseError as e:
            if e.status_code == 404:
                raise DeviceNotFoundError(device, service_id=self.service_id) from e
            raise

    async def set_device_state(
        self,
        device_id: str | int,
        token: str,
        power: str | None = None,
        brightness: float | None = None,
    ) -> Any:
        """Update power and/or brightness, then drop the cached status."""
        device = validate_device_id(device_id)
        valid_token = validate_token(token)

        body: dict[str, Any] = {}
        if power is not None:
            body["power"] = validate_power_state(power)
        if brightness is not None:
            body["brightness"] = validate_brightness(brightness)
        if not body:
            raise ValidationError(
                "state", "At least one of power or brightness must be provided"
            )

        return await self.client.request(
            "PUT",
            f"/IotSwitches/{device}",
            headers={"Authorization": valid_token},
            json_data=body,
            priority=Priority.HIGH,
            invalidate_keys=[device_cache_key(device)],
        )

    async def set_power(self, device_id: str | int, token: str, power: bool) -> Any:
        return await self.set_device_state(device_id, token, power="ON" if power else "OFF")

    async def set_brightness(self, device_id: str | int, token: str, brightness: float) -> Any:
        return await self.set_device_state(device_id, token, brightness=brightness)

    def invalidate_device_cache(self, device_id: str | int) -> bool:
        return self.client.invalidate(device_cache_key(str(device_id)))
