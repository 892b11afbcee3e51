"""Prompt template system."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from ..sessions.models import MessageRole, SessionState


DIALOG_PROMPT_TEMPLATE = """\
You are {agent_name}, talking with {user_name}.
{?agent_description}{agent_description}{/agent_description}
{?agent_motivation}{agent_name}'s motivation: {agent_motivation}{/agent_motivation}
{?has_knowledge}Facts {agent_name} knows:
{#agent_knowledge}- {item}{/agent_knowledge}{/has_knowledge}

{?has_history}Conversation so far:
{#event_history}{speaker}: {utterance}{/event_history}{/has_history}

{user_name}: {user_query}

Reply as {agent_name} in one or two short spoken sentences. Stay in character and do not describe actions.
{agent_name}:"""


@dataclass
class PromptTemplate:
    """
    A reusable prompt template.

    Supports:
    - Variable substitution: {variable_name}
    - Conditional sections: {?condition}...{/condition}
    - Loops: {#items}...{/items}
    - Filters: {variable|uppercase}
    """

    name: str
    template: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Compiled patterns
    _var_pattern = re.compile(r'\{(\w+)(?:\|(\w+))?\}')
    _conditional_pattern = re.compile(r'\{\?(\w+)\}(.*?)\{/\1\}', re.DOTALL)
    _loop_pattern = re.compile(r'\{#(\w+)\}(.*?)\{/\1\}', re.DOTALL)

    # Substituted values are kept out of later passes until rendering ends.
    _escapes = {"{": "\ue000", "}": "\ue001"}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PromptTemplate":
        path = Path(path)
        return cls(name=path.stem, template=path.read_text(encoding="utf-8"))

    def render(self, variables: Optional[Dict[str, Any]] = None) -> str:
        """
        Render the template with variables.

        Conditionals are resolved first, then loops, then plain variables.
        Unknown variables are left in place. Substituted values are inserted
        verbatim and never expanded again.
        """
        variables = dict(variables or {})

        result = self._process_conditionals(self.template, variables)
        result = self._process_loops(result, variables)
        result = self._substitute_variables(result, variables)
        for brace, placeholder in self._escapes.items():
            result = result.replace(placeholder, brace)
        return self._clean_whitespace(result)

    def _substitute_variables(self, text: str, variables: Dict[str, Any]) -> str:
        def replace_var(match):
            var_name = match.group(1)
            filter_name = match.group(2)

            if var_name not in variables:
                return match.group(0)

            value = variables[var_name]
            if value is None:
                return ""

            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            else:
                value = str(value)

            if filter_name:
                value = self._apply_filter(value, filter_name)

            for brace, placeholder in self._escapes.items():
                value = value.replace(brace, placeholder)
            return value

        return self._var_pattern.sub(replace_var, text)

    def _process_conditionals(self, text: str, variables: Dict[str, Any]) -> str:
        def replace_conditional(match):
            value = variables.get(match.group(1))
            if value and (not isinstance(value, str) or value.lower() not in ('false', 'no', '0')):
                return match.group(2).strip()
            return ""

        return self._conditional_pattern.sub(replace_conditional, text)

    def _process_loops(self, text: str, variables: Dict[str, Any]) -> str:
        def replace_loop(match):
            items = variables.get(match.group(1), [])
            if not isinstance(items, (list, tuple)):
                return ""

            rendered_items = []
            for i, item in enumerate(items):
                item_vars = {
                    "item": item,
                    "index": i,
                    "first": i == 0,
                    "last": i == len(items) - 1,
                }
                if isinstance(item, dict):
                    item_vars.update(item)

                rendered_items.append(self._substitute_variables(match.group(2), item_vars).strip())

            return "\n".join(rendered_items)

        return self._loop_pattern.sub(replace_loop, text)

    def _apply_filter(self, value: str, filter_name: str) -> str:
        filters = {
            "uppercase": str.upper,
            "lowercase": str.lower,
            "capitalize": str.capitalize,
            "title": str.title,
            "strip": str.strip,
        }

        filter_fn = filters.get(filter_name)
        if filter_fn:
            return filter_fn(value)
        return value

    def _clean_whitespace(self, text: str) -> str:
        text = re.sub(r'\n{3,}', '\n\n', text)
        lines = [line.rstrip() for line in text.split('\n')]
        return '\n'.join(lines).strip()

    def get_variable_names(self) -> Set[str]:
        """Extract all variable names from the template."""
        var_names = set()
        for pattern in (self._var_pattern, self._conditional_pattern, self._loop_pattern):
            for match in pattern.finditer(self.template):
                var_names.add(match.group(1))
        return var_names


class TemplateRenderer:
    """PromptRenderer backed by PromptTemplate, caching parsed templates."""

    def __init__(self):
        self._cache: Dict[str, PromptTemplate] = {}

    def render(self, template: str, data: Dict[str, Any]) -> str:
        compiled = self._cache.get(template)
        if compiled is None:
            compiled = self._cache[template] = PromptTemplate(name="inline", template=template)
        return compiled.render(data)


def build_prompt_data(state: SessionState) -> Dict[str, Any]:
    """
    Prompt variables for the dialog template.

    The last history entry is the user query; everything before it is the
    event history.
    """
    agent = state.agent
    history = state.messages[:-1]
    user_query = state.messages[-1].content if state.messages else ""

    event_history: List[Dict[str, str]] = [
        {
            "speaker": state.user_name if message.role == MessageRole.USER else agent.name,
            "utterance": message.content,
        }
        for message in history
    ]

    return {
        "agent_name": agent.name,
        "agent_description": agent.description,
        "agent_motivation": agent.motivation,
        "agent_knowledge": list(agent.knowledge),
        "has_knowledge": bool(agent.knowledge),
        "user_name": state.user_name,
        "user_query": user_query,
        "event_history": event_history,
        "has_history": bool(event_history),
    }
