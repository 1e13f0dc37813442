# =============================================================================
# File: topicbridge/bridge/modules.py
# Description: Capability-set bridge modules and their registry
# =============================================================================
# A module is a plain value, not a class to subclass:
#
#     BridgeModule(
#         name="autoreply",
#         init=setup,                       # async (context) -> None
#         commands={"ping": ping},          # async (envelope, args) -> reply text | None
#         message_hooks=[skip_bots],        # async (envelope) -> True to continue
#         destroy=teardown,                 # async () -> None
#     )
#
# Everything a module can do is declared in those five fields and checked
# once, when the module is registered.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Callable, Awaitable, Mapping, Sequence, Dict, List, Any

from topicbridge.bridge.envelope import MessageEnvelope
from topicbridge.config.logging_config import get_logger

log = get_logger("topicbridge.bridge.modules")

InitFn = Callable[[Any], Awaitable[None]]
DestroyFn = Callable[[], Awaitable[None]]
CommandHandler = Callable[[MessageEnvelope, List[str]], Awaitable[Optional[str]]]
MessageHook = Callable[[MessageEnvelope], Awaitable[bool]]


@dataclass(frozen=True)
class BridgeModule:
    name: str
    init: Optional[InitFn] = None
    commands: Mapping[str, CommandHandler] = field(default_factory=dict)
    message_hooks: Sequence[MessageHook] = ()
    destroy: Optional[DestroyFn] = None


@dataclass
class ParsedCommand:
    name: str
    args: List[str]


def parse_command(text: Optional[str]) -> Optional[ParsedCommand]:
    """'/resync@MyBot now' -> ParsedCommand('resync', ['now'])"""
    if not text or not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    name = parts[0].split("@", 1)[0].lower()
    return ParsedCommand(name=name, args=parts[1:]) if name else None


class ModuleRegistry:
    """
    Explicitly registered bridge modules.

    Registration rejects duplicate module names and command names already
    claimed by another module. A module whose init fails is disabled and
    contributes no commands or hooks.
    """

    def __init__(self):
        self._modules: Dict[str, BridgeModule] = {}
        self._commands: Dict[str, str] = {}     # command -> module name
        self._handlers: Dict[str, CommandHandler] = {}
        self._disabled: Dict[str, str] = {}     # module name -> reason

    def register(self, module: BridgeModule) -> None:
        if not module.name:
            raise ValueError("Module name must not be empty")
        if module.name in self._modules:
            raise ValueError(f"Module '{module.name}' already registered")

        for command, handler in module.commands.items():
            if not callable(handler):
                raise TypeError(f"Module '{module.name}': handler for /{command} is not callable")
            owner = self._commands.get(command.lower())
            if owner is not None:
                raise ValueError(f"Module '{module.name}': command /{command} already provided by '{owner}'")
        for hook in module.message_hooks:
            if not callable(hook):
                raise TypeError(f"Module '{module.name}': message hook {hook!r} is not callable")

        self._modules[module.name] = module
        for command, handler in module.commands.items():
            self._commands[command.lower()] = module.name
            self._handlers[command.lower()] = handler
        log.info(f"Registered module '{module.name}' ({len(module.commands)} commands, {len(module.message_hooks)} hooks)")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init_all(self, context: Any) -> None:
        for module in list(self._modules.values()):
            if module.init is None:
                continue
            try:
                await module.init(context)
            except Exception as e:
                log.error(f"Module '{module.name}' failed to initialize, disabling: {e}", exc_info=True)
                self._disable(module.name, str(e))

    async def destroy_all(self) -> None:
        for module in reversed(list(self._modules.values())):
            if module.destroy is None:
                continue
            try:
                await module.destroy()
            except Exception as e:
                log.error(f"Module '{module.name}' failed to shut down: {e}")

    def _disable(self, name: str, reason: str) -> None:
        self._modules.pop(name, None)
        self._disabled[name] = reason
        for command in [cmd for cmd, owner in self._commands.items() if owner == name]:
            del self._commands[command]
            del self._handlers[command]

    # =========================================================================
    # Dispatch
    # =========================================================================

    def command(self, name: str) -> Optional[CommandHandler]:
        return self._handlers.get(name.lower())

    async def run_hooks(self, envelope: MessageEnvelope) -> bool:
        """
        Run every message hook in registration order. Returns False as soon
        as a hook consumes the message. A failing hook is logged and skipped.
        """
        for module in list(self._modules.values()):
            for hook in module.message_hooks:
                try:
                    if not await hook(envelope):
                        log.debug(f"Message {envelope.origin_id} consumed by module '{module.name}'")
                        return False
                except Exception as e:
                    log.error(f"Message hook of module '{module.name}' failed: {e}", exc_info=True)
        return True

    # =========================================================================
    # Introspection
    # =========================================================================

    def names(self) -> List[str]:
        return list(self._modules)

    def commands(self) -> List[str]:
        return sorted(self._commands)

    def disabled(self) -> Dict[str, str]:
        return dict(self._disabled)

    def __len__(self) -> int:
        return len(self._modules)
