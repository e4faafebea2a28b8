"""Function-call interpreter.

Validates recognised calls against the action table and executes them. Every
expected failure (unknown action, bad arguments, store failure) comes back as
text for the chat; nothing from here reaches the client as an exception.
"""

from __future__ import annotations

from collections.abc import Mapping

from core.errors import InvalidArguments, PersistenceError, UnknownAction
from integrations.record_store import AssistanceRequestStore
from models.action_models import Call, FunctionCall, ParseResult, Primitive
from models.session_models import SessionContext
from tools.registry import ACTIONS, ActionSpec, get_action
from utils.logger import logger


def _is_blank(value: Primitive) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class FunctionCallInterpreter:
    """Validate and execute function calls for one record store."""

    def __init__(self, store: AssistanceRequestStore, actions: Mapping[str, ActionSpec] | None = None) -> None:
        self.store = store
        self._actions = actions

    def _lookup(self, name: str) -> ActionSpec | None:
        if self._actions is None:
            return get_action(name)
        return self._actions.get(name)

    @property
    def action_names(self) -> list[str]:
        if self._actions is None:
            return [name.value for name in ACTIONS]
        return list(self._actions)

    def validate(self, call: FunctionCall, context: SessionContext) -> FunctionCall:
        """Fill context-bound arguments and check the call against its schema.

        Returns a new FunctionCall with only the declared arguments plus the
        session-bound ones, enum values normalised to their canonical spelling.

        Raises:
            UnknownAction: If the name is not in the action table
            InvalidArguments: Naming every missing key and every key outside its enum
        """
        spec = self._lookup(call.name)
        if spec is None:
            raise UnknownAction(call.name)

        arguments: dict[str, Primitive] = {
            key: value for key, value in call.arguments.items() if key in spec.accepted and not _is_blank(value)
        }
        for key, attr in spec.context_fields.items():
            if key not in arguments:
                value = getattr(context, attr, None)
                if not _is_blank(value):
                    arguments[key] = value
        # Model-supplied values for these were dropped above as undeclared
        for key, attr in spec.session_fields.items():
            value = getattr(context, attr, None)
            if not _is_blank(value):
                arguments[key] = value

        missing = [key for key in spec.required if key not in arguments]

        invalid: dict[str, str] = {}
        for key, allowed in spec.enums.items():
            if key not in arguments:
                continue
            canonical = {option.lower(): option for option in allowed}
            value = str(arguments[key]).strip()
            if value.lower() in canonical:
                arguments[key] = canonical[value.lower()]
            else:
                invalid[key] = value

        if missing or invalid:
            raise InvalidArguments(spec.name.value, missing=missing, invalid=invalid)

        return FunctionCall(name=spec.name.value, arguments=arguments)

    async def execute(self, call: FunctionCall) -> str:
        """Run an already validated call."""
        spec = self._lookup(call.name)
        if spec is None:
            raise UnknownAction(call.name)
        return await spec.executor(self.store, call.arguments)

    async def resolve(self, result: ParseResult, context: SessionContext) -> str | None:
        """Turn a parse result into the text that replaces the call in the stream.

        Returns None for plain text.
        """
        if not isinstance(result, Call):
            return None

        call = result.call
        try:
            validated = self.validate(call, context)
            text = await self.execute(validated)
        except UnknownAction as e:
            logger.warning(f"Model requested unknown action: {e.name}")
            text = e.user_message
        except InvalidArguments as e:
            logger.warning(str(e), action=e.action, missing=e.missing, invalid=list(e.invalid))
            text = e.user_message
        except PersistenceError as e:
            logger.error(f"Action {call.name} failed in the record store: {e}")
            text = e.user_message

        logger.log_function_call(call.name, dict(call.arguments), text)
        return text
