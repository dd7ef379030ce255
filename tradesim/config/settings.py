"""SimulationSettings — typed view over the admin configuration.

The engine reads settings once at construction; edits are staged and take
effect on the next `open()` of the market session.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from tradesim.config.config_manager import ConfigManager
from tradesim.core.types import SettlementCycle, SimulationSpeed

NS_PER_SECOND = 1_000_000_000

# Price tick cadence per simulation speed
TICK_INTERVAL_SECONDS = {
    SimulationSpeed.SLOW: 5.0,
    SimulationSpeed.NORMAL: 3.0,
    SimulationSpeed.FAST: 1.5,
}

# PENDING → WORKING routing latency per simulation speed
ARMING_DELAY_SECONDS = {
    SimulationSpeed.SLOW: 8.0,
    SimulationSpeed.NORMAL: 5.0,
    SimulationSpeed.FAST: 2.5,
}

# Settlement delay as a fraction of one simulated session
SETTLEMENT_SESSION_FRACTION = {
    SettlementCycle.T1: 1 / 2.5,
    SettlementCycle.T2: 2 / 3,
    SettlementCycle.T3: 1.0,
}


@dataclass(frozen=True)
class SimulationSettings:
    starting_capital: float = 100_000.0
    settlement_cycle: SettlementCycle = SettlementCycle.T2
    base_drift: float = 0.08
    base_volatility: float = 0.20
    event_frequency: float = 0.05
    market_duration_minutes: float = 5.0
    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: float = 0.07
    circuit_breaker_halt_seconds: float = 30.0
    simulation_speed: SimulationSpeed = SimulationSpeed.NORMAL
    interest_rate: float = 0.02
    commission_fee: float = 0.005
    event_scan_seconds: float = 2.0
    event_min_duration_seconds: float = 20.0
    event_max_duration_seconds: float = 40.0
    control_freshness_seconds: float = 5.0
    history_candles: int = 50
    performance_samples: int = 100
    seed: int | None = None

    @classmethod
    def from_config(cls, config: ConfigManager) -> SimulationSettings:
        """Map the merged TOML tree onto settings. Missing keys keep defaults."""
        defaults = cls()
        seed = config.get("system.seed", 0)
        settings = cls(
            starting_capital=float(config.get("account.starting_capital", defaults.starting_capital)),
            settlement_cycle=SettlementCycle(
                config.get("account.settlement_cycle", defaults.settlement_cycle.value)
            ),
            base_drift=float(config.get("market.base_drift", defaults.base_drift)),
            base_volatility=float(config.get("market.base_volatility", defaults.base_volatility)),
            event_frequency=float(config.get("events.frequency", defaults.event_frequency)),
            market_duration_minutes=float(
                config.get("market.duration_minutes", defaults.market_duration_minutes)
            ),
            circuit_breaker_enabled=bool(
                config.get("circuit_breaker.enabled", defaults.circuit_breaker_enabled)
            ),
            circuit_breaker_threshold=float(
                config.get("circuit_breaker.threshold", defaults.circuit_breaker_threshold)
            ),
            circuit_breaker_halt_seconds=float(
                config.get("circuit_breaker.halt_seconds", defaults.circuit_breaker_halt_seconds)
            ),
            simulation_speed=SimulationSpeed(
                config.get("market.simulation_speed", defaults.simulation_speed.value)
            ),
            interest_rate=float(config.get("market.interest_rate", defaults.interest_rate)),
            commission_fee=float(config.get("account.commission_fee", defaults.commission_fee)),
            event_scan_seconds=float(
                config.get("events.scan_interval_seconds", defaults.event_scan_seconds)
            ),
            event_min_duration_seconds=float(
                config.get("events.min_duration_seconds", defaults.event_min_duration_seconds)
            ),
            event_max_duration_seconds=float(
                config.get("events.max_duration_seconds", defaults.event_max_duration_seconds)
            ),
            control_freshness_seconds=float(
                config.get("control.freshness_seconds", defaults.control_freshness_seconds)
            ),
            history_candles=int(config.get("market.history_candles", defaults.history_candles)),
            performance_samples=int(
                config.get("performance.history_samples", defaults.performance_samples)
            ),
            seed=int(seed) if seed else None,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ValueError on out-of-range settings."""
        errors = []
        if self.starting_capital < 0:
            errors.append("starting_capital must be >= 0")
        if not 0.0 <= self.commission_fee < 1.0:
            errors.append("commission_fee must be in [0, 1)")
        if not 0.0 <= self.event_frequency <= 1.0:
            errors.append("event_frequency must be in [0, 1]")
        if self.market_duration_minutes <= 0:
            errors.append("market_duration_minutes must be > 0")
        if not 0.0 < self.circuit_breaker_threshold < 1.0:
            errors.append("circuit_breaker_threshold must be in (0, 1)")
        if self.circuit_breaker_halt_seconds < 0:
            errors.append("circuit_breaker_halt_seconds must be >= 0")
        if self.base_volatility < 0:
            errors.append("base_volatility must be >= 0")
        if self.event_min_duration_seconds > self.event_max_duration_seconds:
            errors.append("event duration window is inverted")
        if self.history_candles <= 0 or self.performance_samples <= 0:
            errors.append("history sizes must be positive")
        if errors:
            raise ValueError("Invalid simulation settings: " + "; ".join(errors))

    @property
    def tick_interval_seconds(self) -> float:
        return TICK_INTERVAL_SECONDS[self.simulation_speed]

    @property
    def arming_delay_ns(self) -> int:
        return int(ARMING_DELAY_SECONDS[self.simulation_speed] * NS_PER_SECOND)

    @property
    def settlement_delay_ns(self) -> int:
        session_ns = self.market_duration_minutes * 60 * NS_PER_SECOND
        return int(session_ns * SETTLEMENT_SESSION_FRACTION[self.settlement_cycle])

    def with_updates(self, **changes: Any) -> SimulationSettings:
        """Return a validated copy with enum-typed fields coerced from strings."""
        if "settlement_cycle" in changes and not isinstance(changes["settlement_cycle"], SettlementCycle):
            changes["settlement_cycle"] = SettlementCycle(changes["settlement_cycle"])
        if "simulation_speed" in changes and not isinstance(changes["simulation_speed"], SimulationSpeed):
            changes["simulation_speed"] = SimulationSpeed(changes["simulation_speed"])
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["settlement_cycle"] = self.settlement_cycle.value
        data["simulation_speed"] = self.simulation_speed.value
        return data
