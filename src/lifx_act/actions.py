from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Sequence

from lifx_act.bulbs import BulbState
from lifx_act.colors import name_to_rgb, rgb_to_hsv
from lifx_act.config import AppConfig
from lifx_act.event_hub import Reporter, run_event
from lifx_act.grammar import (
    ADVERBS,
    CommandError,
    TargetSet,
    normalize_name,
    parse_adverb,
    parse_clause_value,
    parse_color_clause,
    parse_speed,
    parse_targets,
)
from lifx_act.lifx_client import DeviceHandle
from lifx_act.snapshots import SnapshotStore
from lifx_act.state_query import query_state


logger = logging.getLogger("lifx_act.actions")

MAX_LEVEL = 0xFFFF

HSV = int | tuple[int, int, int]


@dataclass
class EffectContext:
    client: Any
    config: AppConfig
    command: str
    reporter: Reporter
    store: SnapshotStore | None = None

    async def query(self, device: DeviceHandle) -> BulbState:
        return await query_state(
            self.client,
            device,
            timeout_seconds=self.config.state_query_timeout_seconds,
            max_retries=self.config.state_query_max_retries,
        )

    async def report(
        self,
        message: str,
        *,
        device: DeviceHandle | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        await self.reporter(
            run_event(
                "device.report",
                command=self.command,
                message=message,
                device=device.name if device else None,
                data=data,
            )
        )


class Effect:
    """A verb's behavior: parsed parameters plus initialize/run/finalize hooks.

    `run` is called once per matched bulb. `initialize` runs before discovery
    starts and `finalize` once the run is over.
    """

    verb: ClassVar[str]
    # token that ends the run of bulb names, e.g. `to` in `save Kitchen to Evening`
    stopper: ClassVar[str | None] = None
    accepts_adverb: ClassVar[bool] = False

    @classmethod
    def parse(cls, tokens: Sequence[str], config: AppConfig) -> "Effect":
        return cls()

    def parameters(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.compare}

    async def initialize(self, ctx: EffectContext, action: "Action") -> None:
        return None

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        raise NotImplementedError

    async def finalize(self, ctx: EffectContext, action: "Action") -> None:
        return None


def step_size(modifier: str | None, illumination_step_size: int) -> int:
    if modifier == "much":
        return 0x50 * illumination_step_size
    if modifier == "little":
        return 0x5 * illumination_step_size
    return 0x20 * illumination_step_size


def _resolve_color_name(name: str) -> tuple[int, int, int]:
    rgb = name_to_rgb(name)
    if rgb is None:
        raise CommandError(code="unknown_color", message=f"Unknown color name: {name}", details={"color": name})
    return rgb


async def apply_hsv(ctx: EffectContext, device: DeviceHandle, hsv: HSV, speed: int) -> None:
    state = await ctx.query(device)
    if isinstance(hsv, int):
        # gray level: plain white at that brightness
        hue, saturation, brightness, kelvin = 0, 0, hsv, 0
    else:
        hue, saturation, brightness = hsv
        kelvin = state.kelvin

    threshold = ctx.config.turn_off_level
    if brightness < threshold:
        if state.is_on:
            await ctx.client.set_power(device, False)
            await ctx.report(f"Turning off bulb {device.name}", device=device)
        return

    if not state.is_on:
        await ctx.client.set_power(device, True)
        await ctx.report(f"Turning on bulb {device.name}", device=device)
    await ctx.client.set_color(
        device,
        hue=hue,
        saturation=saturation,
        brightness=brightness,
        kelvin=kelvin,
        duration_ms=speed,
    )
    await ctx.report(
        f"Set {device.name} to [hsb] 0x{hue:x} 0x{saturation:x} 0x{brightness:x}",
        device=device,
    )


@dataclass
class OnEffect(Effect):
    verb: ClassVar[str] = "on"

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        await ctx.client.set_power(device, True)
        await ctx.report(f"Turning on bulb {device.name}", device=device)


@dataclass
class OffEffect(Effect):
    verb: ClassVar[str] = "off"

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        await ctx.client.set_power(device, False)
        await ctx.report(f"Turning off bulb {device.name}", device=device)


@dataclass
class SaveEffect(Effect):
    verb: ClassVar[str] = "save"
    stopper: ClassVar[str | None] = "to"

    state_name: str | None = None
    states: list[BulbState] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def parse(cls, tokens: Sequence[str], config: AppConfig) -> "SaveEffect":
        return cls(state_name=parse_clause_value(tokens, "to"))

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        state = await ctx.query(device)
        self.states.append(state)
        await ctx.report(f"Captured state of {device.name}", device=device)

    async def finalize(self, ctx: EffectContext, action: "Action") -> None:
        label = self.state_name or "default"
        if not self.states:
            await ctx.report(f"No bulb states captured, '{label}' not saved")
            return
        if ctx.store is None:
            raise RuntimeError("No snapshot store configured")
        await ctx.store.save_states(action.key, self.states, self.state_name)
        await ctx.report(f"Saved {len(self.states)} bulb state(s) to '{label}'")


@dataclass
class RestoreEffect(Effect):
    verb: ClassVar[str] = "restore"
    stopper: ClassVar[str | None] = "from"

    state_name: str | None = None
    # None keeps each bulb's saved transition time
    speed: int | None = None
    states: dict[str, BulbState] | None = field(default=None, repr=False, compare=False)

    @classmethod
    def parse(cls, tokens: Sequence[str], config: AppConfig) -> "RestoreEffect":
        return cls(state_name=parse_clause_value(tokens, "from"), speed=parse_speed(tokens, None))

    async def initialize(self, ctx: EffectContext, action: "Action") -> None:
        saved = None
        if ctx.store is not None:
            saved = await ctx.store.load_states(action.key, self.state_name)
        if saved is None:
            logger.info("No snapshot for key %r state %r", action.key, self.state_name)
            await ctx.report("Configuration state not found, cannot restore")
            self.states = None
            return
        self.states = {normalize_name(state.label): state for state in saved}

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        if not self.states:
            return
        saved = self.states.get(normalize_name(device.name))
        if saved is None:
            return

        current = await ctx.query(device)
        if current.is_on != saved.is_on:
            await ctx.client.set_power(device, saved.is_on)
        await ctx.client.set_color(
            device,
            hue=saved.hue,
            saturation=saved.saturation,
            brightness=saved.brightness,
            kelvin=saved.kelvin,
            duration_ms=saved.duration_ms if self.speed is None else self.speed,
        )
        await ctx.report(f"Restored {device.name}", device=device)


@dataclass
class ColorEffect(Effect):
    verb: ClassVar[str] = "color"
    stopper: ClassVar[str | None] = "in"

    color: tuple[int, int, int] | str
    hsv: HSV
    speed: int
    rgb: tuple[int, int, int] | None = None

    @classmethod
    def parse(cls, tokens: Sequence[str], config: AppConfig) -> "ColorEffect":
        color = parse_color_clause(tokens)
        rgb = _resolve_color_name(color) if isinstance(color, str) else color
        return cls(
            color=color,
            rgb=rgb,
            hsv=rgb_to_hsv(*rgb),
            speed=parse_speed(tokens, config.default_transition_ms),
        )

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        await apply_hsv(ctx, device, self.hsv, self.speed)


@dataclass
class HsbEffect(ColorEffect):
    verb: ClassVar[str] = "hsb"

    @classmethod
    def parse(cls, tokens: Sequence[str], config: AppConfig) -> "HsbEffect":
        color = parse_color_clause(tokens)
        speed = parse_speed(tokens, config.default_transition_ms)
        if isinstance(color, str):
            rgb = _resolve_color_name(color)
            return cls(color=color, rgb=rgb, hsv=rgb_to_hsv(*rgb), speed=speed)
        return cls(color=color, hsv=color, speed=speed)


@dataclass
class DarkerEffect(Effect):
    verb: ClassVar[str] = "darker"
    accepts_adverb: ClassVar[bool] = True

    modifier: str | None
    step: int
    speed: int

    @classmethod
    def parse(cls, tokens: Sequence[str], config: AppConfig) -> "DarkerEffect":
        modifier = parse_adverb(tokens)
        return cls(
            modifier=modifier,
            step=step_size(modifier, config.illumination_step_size),
            speed=parse_speed(tokens, config.default_transition_ms),
        )

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        state = await ctx.query(device)
        if state.brightness == 0 or not state.is_on:
            return

        brightness = max(0, state.brightness - self.step)
        if brightness <= ctx.config.turn_off_level:
            await ctx.client.set_power(device, False)
            await ctx.report(f"Turning off bulb {device.name}", device=device)
            return

        await ctx.client.set_color(
            device,
            hue=state.hue,
            saturation=state.saturation,
            brightness=brightness,
            kelvin=state.kelvin,
            duration_ms=self.speed,
        )
        await ctx.report(f"Dimmed {device.name} to 0x{brightness:x}", device=device)


@dataclass
class LighterEffect(DarkerEffect):
    verb: ClassVar[str] = "lighter"

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        state = await ctx.query(device)
        if state.brightness == MAX_LEVEL and state.is_on:
            return

        brightness = min(MAX_LEVEL, state.brightness + self.step)
        if not state.is_on:
            await ctx.client.set_power(device, True)
            await ctx.report(f"Turning on bulb {device.name}", device=device)
        await ctx.client.set_color(
            device,
            hue=state.hue,
            saturation=state.saturation,
            brightness=brightness,
            kelvin=state.kelvin,
            duration_ms=self.speed,
        )
        await ctx.report(f"Brightened {device.name} to 0x{brightness:x}", device=device)


@dataclass
class StatusEffect(Effect):
    verb: ClassVar[str] = "status"

    async def run(self, ctx: EffectContext, device: DeviceHandle) -> None:
        state = await ctx.query(device)
        lines = [
            f"status for {state.label or device.name}",
            "---------------",
            f"Bulb is {'on' if state.is_on else 'off'}",
            f"Color is [hsb]: 0x{state.hue:x} 0x{state.saturation:x} 0x{state.brightness:x}",
            f"White color value 0x{state.kelvin:x}",
            f"Fade time is {state.duration_ms}[ms]",
            "---------------",
        ]
        await ctx.report("\n".join(lines), device=device, data=state.to_dict())


VERBS: dict[str, type[Effect]] = {
    effect.verb: effect
    for effect in (
        OnEffect,
        OffEffect,
        SaveEffect,
        RestoreEffect,
        ColorEffect,
        HsbEffect,
        DarkerEffect,
        LighterEffect,
        StatusEffect,
    )
}

VERB_ALIASES: dict[str, str] = {"rgb": "color"}


@dataclass
class Action:
    command: str
    verb: str
    effect: Effect
    targets: TargetSet
    original_targets: TargetSet
    # persistence key, fixed at compile time from the original targets
    key: str

    @property
    def parameters(self) -> dict[str, Any]:
        return self.effect.parameters()


def compile_command(tokens: Sequence[str], config: AppConfig) -> Action:
    tokens = [token for token in tokens if token]
    if not tokens:
        raise CommandError(code="empty_command", message="No action defined")

    cursor = 0
    adverb = None
    if tokens[0].lower() in ADVERBS:
        if len(tokens) < 2:
            raise CommandError(code="missing_verb", message="No verb defined", details={"tokens": tokens})
        adverb = tokens[0].lower()
        cursor = 1

    word = tokens[cursor].lower()
    effect_cls = VERBS.get(VERB_ALIASES.get(word, word))
    if effect_cls is None:
        raise CommandError(
            code="unknown_verb",
            message=f"No verb recognized: {tokens[cursor]}",
            details={"tokens": tokens},
        )
    if adverb and not effect_cls.accepts_adverb:
        raise CommandError(
            code="adverb_not_allowed",
            message=f"'{adverb}' cannot be used with '{effect_cls.verb}'",
            details={"adverb": adverb, "verb": effect_cls.verb},
        )

    effect = effect_cls.parse(tokens, config)
    targets = parse_targets(tokens, cursor + 1, effect_cls.stopper)
    original = targets.copy()
    return Action(
        command=" ".join(tokens),
        verb=effect_cls.verb,
        effect=effect,
        targets=targets,
        original_targets=original,
        key=original.key,
    )
