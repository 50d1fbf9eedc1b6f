from assignment_engine.core.config import settings
from assignment_engine.platform.ports.event_bus import EventBusPort
from assignment_engine.platform.adapters.bus_noop import NoopEventBus
from assignment_engine.platform.adapters.bus_redis import RedisEventBus
from assignment_engine.platform.ports.case_management import CaseManagementPort
from assignment_engine.platform.adapters.case_management_noop import NoopCaseManagement
from assignment_engine.platform.adapters.case_management_http import HttpCaseManagement

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _case_management: CaseManagementPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def case_management(cls) -> CaseManagementPort:
        if cls._case_management is None:
            prov = (settings.CASE_MANAGEMENT_PROVIDER or "noop").lower()
            if prov == "http":
                cls._case_management = HttpCaseManagement()
            else:
                cls._case_management = NoopCaseManagement()
        return cls._case_management

    @classmethod
    def override(cls, *, event_bus: EventBusPort | None = None, case_management: CaseManagementPort | None = None):
        if event_bus is not None:
            cls._event_bus = event_bus
        if case_management is not None:
            cls._case_management = case_management

    @classmethod
    async def close(cls):
        for provider in (cls._event_bus, cls._case_management):
            closer = getattr(provider, "close", None)
            if closer is not None:
                await closer()
        cls._event_bus = None
        cls._case_management = None

registry = ProviderRegistry()
