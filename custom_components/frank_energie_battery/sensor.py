"""Sensor platform for Frank Energie Battery integration.

Creates one device per account with sensors for today's aggregated energy,
the trading results summed over all batteries and the current trading mode.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorEntityDescription,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import PERCENTAGE, UnitOfEnergy
from homeassistant.core import HomeAssistant
from homeassistant.helpers.device_registry import DeviceEntryType, DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .batterymetrics.core.types import Aggregate, FinancialAggregate
from .const import DEFAULT_NAME, DOMAIN, TRADING_MODES
from .coordinator import FrankEnergieBatteryCoordinator

_LOGGER = logging.getLogger(__name__)

CURRENCY_EURO = "EUR"


@dataclass(frozen=True, kw_only=True)
class EnergySensorEntityDescription(SensorEntityDescription):
    """Describes a sensor reading the energy aggregate."""

    value_fn: Callable[[Aggregate], float | int]


@dataclass(frozen=True, kw_only=True)
class FinancialSensorEntityDescription(SensorEntityDescription):
    """Describes a sensor reading the trading-result aggregate."""

    value_fn: Callable[[FinancialAggregate], float | int]


ENERGY_SENSORS: tuple[EnergySensorEntityDescription, ...] = (
    EnergySensorEntityDescription(
        key="daily_charged",
        translation_key="daily_charged",
        native_unit_of_measurement=UnitOfEnergy.KILO_WATT_HOUR,
        device_class=SensorDeviceClass.ENERGY,
        state_class=SensorStateClass.TOTAL,
        suggested_display_precision=2,
        value_fn=lambda agg: agg.daily_charged,
    ),
    EnergySensorEntityDescription(
        key="daily_discharged",
        translation_key="daily_discharged",
        native_unit_of_measurement=UnitOfEnergy.KILO_WATT_HOUR,
        device_class=SensorDeviceClass.ENERGY,
        state_class=SensorStateClass.TOTAL,
        suggested_display_precision=2,
        value_fn=lambda agg: agg.daily_discharged,
    ),
    EnergySensorEntityDescription(
        key="average_percentage",
        translation_key="average_percentage",
        native_unit_of_measurement=PERCENTAGE,
        device_class=SensorDeviceClass.BATTERY,
        state_class=SensorStateClass.MEASUREMENT,
        suggested_display_precision=0,
        value_fn=lambda agg: agg.average_percentage,
    ),
    EnergySensorEntityDescription(
        key="battery_count",
        translation_key="battery_count",
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=lambda agg: agg.source_count,
    ),
)

FINANCIAL_SENSORS: tuple[FinancialSensorEntityDescription, ...] = (
    FinancialSensorEntityDescription(
        key="period_trading_result",
        translation_key="period_trading_result",
        native_unit_of_measurement=CURRENCY_EURO,
        device_class=SensorDeviceClass.MONETARY,
        suggested_display_precision=2,
        value_fn=lambda fin: fin.period_trading_result,
    ),
    FinancialSensorEntityDescription(
        key="period_total_result",
        translation_key="period_total_result",
        native_unit_of_measurement=CURRENCY_EURO,
        device_class=SensorDeviceClass.MONETARY,
        suggested_display_precision=2,
        value_fn=lambda fin: fin.period_total_result,
    ),
    FinancialSensorEntityDescription(
        key="period_epex_result",
        translation_key="period_epex_result",
        native_unit_of_measurement=CURRENCY_EURO,
        device_class=SensorDeviceClass.MONETARY,
        suggested_display_precision=2,
        value_fn=lambda fin: fin.period_epex_result,
    ),
    FinancialSensorEntityDescription(
        key="period_imbalance_result",
        translation_key="period_imbalance_result",
        native_unit_of_measurement=CURRENCY_EURO,
        device_class=SensorDeviceClass.MONETARY,
        suggested_display_precision=2,
        value_fn=lambda fin: fin.period_imbalance_result,
    ),
    FinancialSensorEntityDescription(
        key="period_frank_slim",
        translation_key="period_frank_slim",
        native_unit_of_measurement=CURRENCY_EURO,
        device_class=SensorDeviceClass.MONETARY,
        suggested_display_precision=2,
        value_fn=lambda fin: fin.period_frank_slim,
    ),
    FinancialSensorEntityDescription(
        key="total_trading_result",
        translation_key="total_trading_result",
        native_unit_of_measurement=CURRENCY_EURO,
        device_class=SensorDeviceClass.MONETARY,
        suggested_display_precision=2,
        value_fn=lambda fin: fin.total_trading_result,
    ),
    FinancialSensorEntityDescription(
        key="failed_battery_count",
        translation_key="failed_battery_count",
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=lambda fin: len(fin.failures),
    ),
)


TRADING_MODE_SENSOR = SensorEntityDescription(
    key="trading_mode",
    translation_key="trading_mode",
    device_class=SensorDeviceClass.ENUM,
    options=TRADING_MODES,
)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up Frank Energie Battery sensors from a config entry."""
    coordinator: FrankEnergieBatteryCoordinator = hass.data[DOMAIN][entry.entry_id]

    entities: list[SensorEntity] = [
        EnergySensor(coordinator, description, entry)
        for description in ENERGY_SENSORS
    ]
    entities.extend(
        FinancialSensor(coordinator, description, entry)
        for description in FINANCIAL_SENSORS
    )
    entities.append(TradingModeSensor(coordinator, TRADING_MODE_SENSOR, entry))
    async_add_entities(entities)


class FrankEnergieBatterySensor(
    CoordinatorEntity[FrankEnergieBatteryCoordinator], SensorEntity
):
    """Common base: one device per config entry, keyed by entry id."""

    _attr_has_entity_name = True

    def __init__(
        self,
        coordinator: FrankEnergieBatteryCoordinator,
        description: SensorEntityDescription,
        entry: ConfigEntry,
    ) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self.entity_description = description
        self._attr_unique_id = f"{DOMAIN}_{entry.entry_id}_{description.key}"
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, entry.entry_id)},
            name=entry.title or DEFAULT_NAME,
            manufacturer="Frank Energie",
            model="Smart battery trading",
            entry_type=DeviceEntryType.SERVICE,
        )


class EnergySensor(FrankEnergieBatterySensor):
    """Today's energy totals across all batteries."""

    entity_description: EnergySensorEntityDescription

    @property
    def available(self) -> bool:
        """Energy totals come from the engine, not from the trading-result poll."""
        return self.coordinator.engine.state is not None

    @property
    def native_value(self) -> float | int:
        return self.entity_description.value_fn(self.coordinator.data["energy"])

    @property
    def last_reset(self) -> datetime | None:
        if self.entity_description.state_class is not SensorStateClass.TOTAL:
            return None
        return self.coordinator.energy_last_reset

    @property
    def extra_state_attributes(self) -> dict[str, Any] | None:
        """Per-battery breakdown, on the battery count sensor only."""
        if self.entity_description.key != "battery_count":
            return None
        aggregate: Aggregate = self.coordinator.data["energy"]
        return {
            "batteries": [snapshot.to_dict() for snapshot in aggregate.per_source],
        }


class FinancialSensor(FrankEnergieBatterySensor):
    """Trading results summed over all batteries that answered."""

    entity_description: FinancialSensorEntityDescription

    @property
    def native_value(self) -> float | int:
        return self.entity_description.value_fn(self.coordinator.data["financial"])

    @property
    def extra_state_attributes(self) -> dict[str, Any] | None:
        financial: FinancialAggregate = self.coordinator.data["financial"]
        attrs: dict[str, Any] = {
            "battery_count": financial.source_count,
            "succeeded_count": financial.succeeded_count,
        }
        if financial.failures:
            attrs["failed_batteries"] = [
                f"{failure.display_name}: {failure.error}"
                for failure in financial.failures
            ]
        return attrs


class TradingModeSensor(FrankEnergieBatterySensor):
    """Trading mode of the primary battery, derived from its settings."""

    @property
    def available(self) -> bool:
        """Stays available with the last known mode when a poll fails."""
        return self.coordinator.data["trading_mode"] is not None

    @property
    def native_value(self) -> str | None:
        return self.coordinator.data["trading_mode"]

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        settings: dict[str, Any] = self.coordinator.data["battery_settings"]
        return {
            "battery_mode": settings.get("batteryMode"),
            "trading_strategy": settings.get("imbalanceTradingStrategy"),
        }
