"""
Scenario definitions.

A scenario is a YAML or JSON document describing the initial accounts, the
block environment, the agents and how many steps to run. It is validated
with pydantic at load time, so typos and invalid values fail before a run
starts.

Usage:
    scenario = load_scenario("scenarios/transfer.yaml")
    orchestrator = build_orchestrator(scenario)
    report = orchestrator.run()

Wherever an address is expected (``to``, ``recipients``, filter addresses)
the name of an agent or of a named account can be used instead.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from evmsim.agents.base import Agent, derive_agent_address
from evmsim.agents.registry import build_agent
from evmsim.core import constants
from evmsim.core.config import ExecutionConfig
from evmsim.core.primitives import ZERO_ADDRESS, keccak256, normalize_address, parse_hex_bytes, parse_uint
from evmsim.core.simulation_exceptions import AgentError, ScenarioError
from evmsim.core.state.account import Account
from evmsim.core.state.world_state import BlockEnvironment, WorldState
from evmsim.simulation.orchestrator import Orchestrator

UintLike = Union[int, str]


def _uint(value: Any) -> int:
    try:
        return parse_uint(value)
    except ValueError as exc:
        raise ValueError(str(exc)) from exc


def _hex(value: str) -> str:
    parse_hex_bytes(value)
    return value


class StrictModel(BaseModel):
    """Base model that rejects unknown fields (catches typos)."""

    model_config = ConfigDict(extra="forbid")


class AccountConfig(StrictModel):
    """An account present before the first step."""

    address: str
    name: Optional[str] = None
    balance: UintLike = 0
    nonce: int = Field(default=0, ge=0)
    code: str = "0x"
    storage: Dict[str, UintLike] = Field(default_factory=dict)

    @field_validator("address")
    @classmethod
    def _address(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("balance")
    @classmethod
    def _balance(cls, value: UintLike) -> int:
        return _uint(value)

    @field_validator("code")
    @classmethod
    def _code(cls, value: str) -> str:
        return _hex(value)


class BlockConfig(StrictModel):
    """Block environment at the first step."""

    number: int = Field(default=1, ge=0)
    timestamp: int = Field(default=constants.DEFAULT_GENESIS_TIMESTAMP, ge=0)
    gas_limit: int = Field(default=constants.DEFAULT_BLOCK_GAS_LIMIT, ge=constants.TX_BASE_GAS)
    base_fee: UintLike = 0
    coinbase: str = ZERO_ADDRESS
    chain_id: int = Field(default=constants.DEFAULT_CHAIN_ID, ge=1)
    prevrandao: UintLike = 0

    @field_validator("coinbase")
    @classmethod
    def _coinbase(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("base_fee", "prevrandao")
    @classmethod
    def _uints(cls, value: UintLike) -> int:
        return _uint(value)


class TransactionConfig(StrictModel):
    """A transaction request inside an agent definition (sender is the agent)."""

    to: Optional[str] = None
    value: UintLike = 0
    data: str = "0x"
    gas_limit: Optional[int] = Field(default=None, ge=constants.TX_BASE_GAS)
    gas_price: UintLike = 0
    nonce: Optional[int] = Field(default=None, ge=0)
    label: Optional[str] = None

    @field_validator("value", "gas_price")
    @classmethod
    def _uints(cls, value: UintLike) -> int:
        return _uint(value)

    @field_validator("data")
    @classmethod
    def _data(cls, value: str) -> str:
        return _hex(value)


class EventFilterConfig(StrictModel):
    address: Optional[str] = None
    topic0: Optional[UintLike] = None

    @field_validator("topic0")
    @classmethod
    def _topic0(cls, value: Optional[UintLike]) -> Optional[int]:
        return None if value is None else _uint(value)


class AgentConfig(StrictModel):
    """
    One agent. ``kind`` selects which of the optional fields apply:

    - scripted: ``script`` (step number → requests)
    - stochastic: ``recipients``, ``probability``, ``min_value``,
      ``max_value``, ``seed``, ``gas_limit``, ``gas_price``
    - reactive: ``initial``, ``on_success``, ``on_failure``
    - passive: none
    """

    name: str = Field(min_length=1)
    kind: Literal["passive", "scripted", "stochastic", "reactive"]
    address: Optional[str] = None
    balance: UintLike = 0
    event_filters: List[EventFilterConfig] = Field(default_factory=list)

    script: Dict[int, List[TransactionConfig]] = Field(default_factory=dict)

    recipients: List[str] = Field(default_factory=list)
    seed: Optional[int] = None
    probability: float = Field(default=1.0, ge=0.0, le=1.0)
    min_value: UintLike = 1
    max_value: Optional[UintLike] = None
    gas_limit: Optional[int] = Field(default=None, ge=constants.TX_BASE_GAS)
    gas_price: UintLike = 0

    initial: List[TransactionConfig] = Field(default_factory=list)
    on_success: List[TransactionConfig] = Field(default_factory=list)
    on_failure: List[TransactionConfig] = Field(default_factory=list)

    @field_validator("balance", "min_value", "gas_price")
    @classmethod
    def _uints(cls, value: UintLike) -> int:
        return _uint(value)

    @field_validator("max_value")
    @classmethod
    def _max_value(cls, value: Optional[UintLike]) -> Optional[int]:
        return None if value is None else _uint(value)

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "AgentConfig":
        if self.script and self.kind != "scripted":
            raise ValueError(f"'script' only applies to scripted agents, not {self.kind}")
        if self.recipients and self.kind != "stochastic":
            raise ValueError(f"'recipients' only applies to stochastic agents, not {self.kind}")
        if (self.initial or self.on_success or self.on_failure) and self.kind != "reactive":
            raise ValueError(f"'initial'/'on_success'/'on_failure' only apply to reactive agents, not {self.kind}")
        if self.kind == "stochastic":
            if not self.recipients:
                raise ValueError("stochastic agents need at least one recipient")
            if self.max_value is not None and self.max_value < self.min_value:
                raise ValueError("max_value must be >= min_value")
        if any(step < 1 for step in self.script):
            raise ValueError("script steps are numbered from 1")
        return self


class SnapshotPolicy(StrictModel):
    every_step: bool = True
    max_snapshots: int = Field(default=constants.DEFAULT_MAX_SNAPSHOTS, ge=1)


class ScenarioConfig(StrictModel):
    """Top-level scenario document."""

    name: str = "scenario"
    steps: int = Field(default=1, ge=0)
    seed: int = 0
    block: BlockConfig = Field(default_factory=BlockConfig)
    accounts: List[AccountConfig] = Field(default_factory=list)
    agents: List[AgentConfig] = Field(default_factory=list)
    snapshots: SnapshotPolicy = Field(default_factory=SnapshotPolicy)
    include_admin: bool = True
    parallel_observe: bool = False
    wall_clock_budget: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_unique(self) -> "ScenarioConfig":
        names = [agent.name for agent in self.agents]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate agent names: {', '.join(duplicates)}")
        addresses = [account.address for account in self.accounts]
        duplicates = sorted({address for address in addresses if addresses.count(address) > 1})
        if duplicates:
            raise ValueError(f"duplicate account addresses: {', '.join(duplicates)}")
        return self


# ==================== Loading ====================


def parse_scenario(data: Mapping[str, Any]) -> ScenarioConfig:
    """
    Validate a scenario mapping.

    Raises:
        ScenarioError: With the pydantic error list in ``details["errors"]``
    """
    try:
        return ScenarioConfig.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"location": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ScenarioError(
            f"Invalid scenario: {len(errors)} validation error(s)",
            details={"errors": errors},
        ) from exc


def load_scenario(path: Union[str, Path]) -> ScenarioConfig:
    """
    Load a scenario from a ``.yaml``/``.yml`` or ``.json`` file.

    Raises:
        ScenarioError: If the file is missing, unparseable or invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ScenarioError(f"Cannot read scenario file {path}: {exc}", details={"path": str(path)}) from exc

    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ScenarioError(
                f"Unsupported scenario format {suffix!r}; use .yaml, .yml or .json",
                details={"path": str(path)},
            )
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ScenarioError(f"Cannot parse scenario file {path}: {exc}", details={"path": str(path)}) from exc

    if not isinstance(data, Mapping):
        raise ScenarioError("Scenario document must be a mapping", details={"path": str(path)})
    return parse_scenario(data)


# ==================== Construction ====================


def derive_agent_seed(scenario_seed: int, name: str) -> int:
    """Per-agent RNG seed, so agents draw independent streams from one scenario seed."""
    return int.from_bytes(keccak256(f"{scenario_seed}:{name}".encode("utf-8"))[:8], "big")


class _AddressBook:
    """Resolves agent and account names to addresses."""

    def __init__(self, scenario: ScenarioConfig) -> None:
        self.names: Dict[str, str] = {}
        for account in scenario.accounts:
            if account.name:
                self.names[account.name] = account.address
        for agent in scenario.agents:
            self.names[agent.name] = self.agent_address(agent)

    @staticmethod
    def agent_address(agent: AgentConfig) -> str:
        if agent.address is None:
            return derive_agent_address(agent.name)
        try:
            return normalize_address(agent.address)
        except ValueError as exc:
            raise ScenarioError(f"Invalid address for agent {agent.name!r}: {exc}") from exc

    def resolve(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if value in self.names:
            return self.names[value]
        try:
            return normalize_address(value)
        except ValueError:
            raise ScenarioError(
                f"Unknown agent, account or address {value!r}",
                details={"known_names": sorted(self.names)},
            ) from None

    def request(self, tx: TransactionConfig) -> Dict[str, Any]:
        entry = tx.model_dump()
        entry["to"] = self.resolve(tx.to)
        return entry


def _agent_definition(agent: AgentConfig, book: _AddressBook, scenario_seed: int) -> Dict[str, Any]:
    definition: Dict[str, Any] = {
        "name": agent.name,
        "kind": agent.kind,
        "address": book.agent_address(agent),
        "event_filters": [
            {"address": book.resolve(entry.address), "topic0": entry.topic0} for entry in agent.event_filters
        ],
    }
    if agent.kind == "scripted":
        definition["script"] = {
            step: [book.request(tx) for tx in requests] for step, requests in agent.script.items()
        }
    elif agent.kind == "stochastic":
        definition.update(
            recipients=[book.resolve(recipient) for recipient in agent.recipients],
            seed=agent.seed if agent.seed is not None else derive_agent_seed(scenario_seed, agent.name),
            probability=agent.probability,
            min_value=agent.min_value,
            max_value=agent.max_value if agent.max_value is not None else agent.min_value,
            gas_limit=agent.gas_limit,
            gas_price=agent.gas_price,
        )
    elif agent.kind == "reactive":
        definition.update(
            initial=[book.request(tx) for tx in agent.initial],
            on_success=[book.request(tx) for tx in agent.on_success],
            on_failure=[book.request(tx) for tx in agent.on_failure],
        )
    return definition


def _initial_accounts(scenario: ScenarioConfig, book: _AddressBook) -> List[Account]:
    accounts: Dict[str, Account] = {}
    for entry in scenario.accounts:
        accounts[entry.address] = Account.from_dict(entry.model_dump())
    for agent in scenario.agents:
        if not agent.balance:
            continue
        address = book.agent_address(agent)
        if address in accounts:
            raise ScenarioError(
                f"Agent {agent.name!r} has a balance but its address is also listed under accounts",
                details={"agent": agent.name, "address": address},
            )
        accounts[address] = Account(address=address, balance=agent.balance)
    return list(accounts.values())


def build_orchestrator(
    scenario: ScenarioConfig,
    config: Optional[ExecutionConfig] = None,
    seed: Optional[int] = None,
    steps: Optional[int] = None,
) -> Orchestrator:
    """
    Build a ready-to-run orchestrator from a validated scenario.

    Args:
        scenario: Validated scenario
        config: Base execution settings (defaults to the environment)
        seed: Overrides the scenario seed
        steps: Overrides the scenario step count

    Raises:
        ScenarioError: If names cannot be resolved or agents cannot be built
    """
    base = config or ExecutionConfig.from_env()
    block = scenario.block
    config = base.with_overrides(
        chain_id=block.chain_id,
        block_gas_limit=block.gas_limit,
        default_gas_limit=min(base.default_gas_limit, block.gas_limit),
        max_snapshots=scenario.snapshots.max_snapshots,
        snapshot_every_step=scenario.snapshots.every_step,
        parallel_observe=scenario.parallel_observe or None,
    )

    book = _AddressBook(scenario)
    world_state = WorldState(
        accounts=_initial_accounts(scenario, book),
        block=BlockEnvironment(
            number=block.number,
            timestamp=block.timestamp,
            gas_limit=block.gas_limit,
            base_fee=block.base_fee,
            coinbase=block.coinbase,
            chain_id=block.chain_id,
            prevrandao=block.prevrandao,
        ),
    )

    scenario_seed = scenario.seed if seed is None else seed
    agents: List[Agent] = []
    for agent in scenario.agents:
        try:
            agents.append(build_agent(_agent_definition(agent, book, scenario_seed)))
        except AgentError as exc:
            raise ScenarioError(exc.message, details={"agent": agent.name, **exc.details}) from exc

    try:
        return Orchestrator(
            world_state=world_state,
            config=config,
            agents=agents,
            include_admin=scenario.include_admin,
            name=scenario.name,
            planned_steps=scenario.steps if steps is None else steps,
            wall_clock_budget=scenario.wall_clock_budget,
        )
    except AgentError as exc:
        raise ScenarioError(exc.message, details=exc.details) from exc
