from __future__ import annotations

"""Form handling: which values to type into the fields around a candidate.

Values configured with ``CrawlRulesBuilder.input_value`` always win. Other
fields get a value from `InputValueGenerator`, which uses simple
heuristics, random strings, or (in ``FormFillMode.LLM``) an OpenAI model
that looks at the page to come up with realistic text.
"""

import logging
import os
import random
import re
import string
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from openai import OpenAI, OpenAIError

from .dom import element_xpath
from .elements import FormInput, How, Identification, InputType
from .rules import CrawlRules, FormFillMode

logger = logging.getLogger(__name__)

_SKIPPED_TYPES = {"submit", "button", "reset", "image", "file", "hidden"}


class InputValueGenerator:
    """Synthesises values for form fields."""

    def __init__(
        self,
        mode: FormFillMode = FormFillMode.NORMAL,
        openai_api_key: str | None = None,
        model: str = "gpt-4o-mini",
        seed: Optional[int] = None,
    ) -> None:
        self._mode = FormFillMode(mode)
        self._model = model
        self._random = random.Random(seed)
        self._client: Optional[OpenAI] = None
        self.token_usage: int = 0
        if self._mode == FormFillMode.LLM:
            load_dotenv()
            api_key = openai_api_key or os.getenv("OPENAI_API_KEY", "")
            if api_key:
                self._client = OpenAI(api_key=api_key)
            else:
                logger.warning("No OPENAI_API_KEY configured; form values fall back to heuristics")

    @property
    def mode(self) -> FormFillMode:
        return self._mode

    def generate(self, field: Dict[str, Any], page_html: str = "") -> Tuple[str, ...]:
        """Return the values for one field.

        ``field`` describes the element: ``input_type`` plus the ``name``,
        ``id``, ``placeholder`` and (for selects) ``options`` it carries.
        """
        input_type: InputType = field.get("input_type", InputType.TEXT)
        if input_type in (InputType.CHECKBOX, InputType.RADIO):
            if self._mode == FormFillMode.RANDOM:
                return (str(self._random.random() < 0.5).lower(),)
            return ("true",)
        if input_type == InputType.SELECT:
            options = [o for o in field.get("options", []) if o]
            if not options:
                return ()
            if self._mode == FormFillMode.RANDOM:
                return (self._random.choice(options),)
            return (options[0],)
        if self._mode == FormFillMode.RANDOM:
            return (self.random_text(),)
        if self._client is not None:
            text = self._ask_model(field, page_html)
            if text:
                return (text,)
        return (self.heuristic_text(field),)

    def random_text(self, length: int = 8) -> str:
        return "".join(self._random.choice(string.ascii_letters) for _ in range(length))

    @staticmethod
    def heuristic_text(field: Dict[str, Any]) -> str:
        input_type = field.get("input_type", InputType.TEXT)
        hints = " ".join(
            str(field.get(k, "")) for k in ("name", "id", "placeholder")
        ).lower()
        if input_type == InputType.EMAIL or "email" in hints:
            return "test@example.com"
        if "phone" in hints or "tel" in hints:
            return "123-456-7890"
        if input_type == InputType.NUMBER or "age" in hints or "amount" in hints:
            return "42"
        if input_type == InputType.PASSWORD or "password" in hints:
            return "Secret-123"
        if "name" in hints:
            return "Jane Doe"
        return "sample text"

    def _ask_model(self, field: Dict[str, Any], page_html: str) -> str:
        prompt = (
            "Now suppose you are analysing a GUI page with following elements (truncated HTML below).\n"
            f"<html_snippet>\n{page_html[:1500]}\n</html_snippet>\n\n"
            f"For the input element {field.get('name') or field.get('id') or 'UNKNOWN'} "
            f"(type {field.get('input_type', InputType.TEXT).value}, placeholder "
            f"{field.get('placeholder', '')!r}) please generate an example of possible input. "
            "The input you generate should be short and precise, and must follow any semantic "
            "clues in the UI (e.g. email / phone).\n\n"
            "Please respond in the following format:\n"
            'Input text: "<generated input>"'
        )
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=32,
            )
        except OpenAIError as ex:
            logger.warning("Input generation failed, using heuristics: %s", ex)
            return ""
        self.token_usage += resp.usage.total_tokens if resp and resp.usage else 0
        content = (resp.choices[0].message.content or "").strip()
        content = re.sub(r"```[a-zA-Z]*", "", content).strip("` ")
        value = re.sub(r"^input text\s*:\s*", "", content, flags=re.I)
        return value.strip().strip('"')


class FormHandler:
    """Collects the form inputs that belong with a candidate element."""

    def __init__(self, rules: CrawlRules, generator: Optional[InputValueGenerator] = None) -> None:
        self._rules = rules
        self._generator = generator or InputValueGenerator(rules.form_fill_mode)

    def form_inputs_for(self, element: Any, page_html: str = "") -> Tuple[FormInput, ...]:
        """Inputs of the form enclosing ``element`` (an lxml element)."""
        form = next((a for a in element.iterancestors() if a.tag == "form"), None)
        if form is None:
            return ()
        inputs: List[FormInput] = []
        for field_element in form.iter("input", "textarea", "select"):
            if field_element is element:
                continue
            type_attr = (field_element.get("type") or "").lower()
            if field_element.tag == "input" and type_attr in _SKIPPED_TYPES:
                continue
            form_input = self.form_input_for(field_element, page_html)
            if form_input is not None:
                inputs.append(form_input)
        return tuple(inputs)

    def form_input_for(self, field_element: Any, page_html: str = "") -> Optional[FormInput]:
        identification = identify_field(field_element)
        configured = self._rules.input_values_for(identification)
        if configured is not None:
            return configured
        input_type = InputType.from_element(field_element.tag, field_element.get("type"))
        description: Dict[str, Any] = {
            "input_type": input_type,
            "name": field_element.get("name", ""),
            "id": field_element.get("id", ""),
            "placeholder": field_element.get("placeholder", ""),
        }
        if input_type == InputType.SELECT:
            description["options"] = [
                o.get("value", o.text_content().strip()) for o in field_element.iter("option")
            ]
        values = self._generator.generate(description, page_html)
        if not values:
            return None
        return FormInput(identification, input_type, values)


def identify_field(field_element: Any) -> Identification:
    if field_element.get("id"):
        return Identification(How.ID, field_element.get("id"))
    if field_element.get("name"):
        return Identification(How.NAME, field_element.get("name"))
    return Identification(How.XPATH, element_xpath(field_element))
