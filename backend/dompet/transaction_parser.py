"""Turn a free-text chat message into a :class:`ParsedTransaction`.

The OpenAI parser asks a chat model for a JSON object and validates it with
pydantic. When no API key is configured, when the call fails or when the model
answers with something unusable, the heuristic parser takes over. Both return
``None`` for messages that are not a transaction.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from .config import Settings
from .models import TransactionKind
from .parsing import AMOUNT_MULTIPLIERS, parse_amount
from .schemas import ParsedTransaction

logger = logging.getLogger(__name__)


class TransactionParser(Protocol):
    def parse(self, text: str) -> ParsedTransaction | None: ...


TRANSFER_WORDS = {"transfer", "tf", "pindah", "pindahkan", "kirim"}
INCOME_WORDS = {
    "gaji",
    "salary",
    "terima",
    "diterima",
    "dapat",
    "bonus",
    "thr",
    "pemasukan",
    "income",
    "freelance",
    "hadiah",
    "dividen",
    "refund",
}
ACCOUNT_PREFIXES = ("dari", "pakai", "pake", "via", "dengan", "dgn", "di")

_WORD_SUFFIXES = "|".join(sorted((s for s in AMOUNT_MULTIPLIERS if len(s) > 1), key=len, reverse=True))
_LETTER_SUFFIXES = "".join(s for s in AMOUNT_MULTIPLIERS if len(s) == 1)
# A one-letter multiplier must end the word, so "2 t-shirt" stays 2.
_AMOUNT_TOKEN_RE = re.compile(
    rf"(?:rp\.?\s*)?\d[\d.,]*(?:\s*(?:{_WORD_SUFFIXES})\b|\s*[{_LETTER_SUFFIXES}](?=[\s.,!?]|$))?",
    re.IGNORECASE,
)
_KE_RE = re.compile(r"\bke\b", re.IGNORECASE)


def _detect_kind(text: str) -> TransactionKind:
    words = re.findall(r"[a-z]+", text.lower())
    if words and words[0] in TRANSFER_WORDS:
        return TransactionKind.TRANSFER
    if any(word in INCOME_WORDS for word in words):
        return TransactionKind.INCOME
    return TransactionKind.EXPENSE


def _strip_account_prefix(raw: str) -> str:
    words = raw.strip().split()
    while words and words[0].lower() in ACCOUNT_PREFIXES:
        words.pop(0)
    return " ".join(words).strip(" .,")


def _split_on_ke(rest: str) -> tuple[str, str, str]:
    parts = _KE_RE.split(rest, maxsplit=1)
    if len(parts) == 2:
        return parts[0].strip(), "ke", parts[1].strip()
    return rest.strip(), "", ""


class HeuristicTransactionParser:
    """Understands ``<note> <amount> <account> [ke <account>]`` messages.

    ``"Beli kopi 25rb BCA"``, ``"Gaji 10jt ke Mandiri"`` and
    ``"Transfer 500rb BCA ke Gopay"`` are the shapes it is built around.
    """

    def parse(self, text: str) -> ParsedTransaction | None:
        cleaned = " ".join(text.split())
        # The amount closest to the account name wins: "Beli 2 kopi 25rb BCA".
        best: tuple[float, re.Match[str]] | None = None
        for match in _AMOUNT_TOKEN_RE.finditer(cleaned):
            value = parse_amount(match.group(0))
            if value:
                best = (value, match)
        if best is None:
            return None
        amount, match = best

        kind = _detect_kind(cleaned)
        note = cleaned[: match.start()].strip(" ,.-") or cleaned
        rest = cleaned[match.end():]
        left, _, right = _split_on_ke(rest)
        left = _strip_account_prefix(left)
        right = _strip_account_prefix(right)

        to_account: str | None = None
        if kind == TransactionKind.TRANSFER:
            source, to_account = left, right or None
        elif kind == TransactionKind.INCOME:
            source = right or left
        else:
            source = left or right
        if not source:
            return None

        try:
            return ParsedTransaction(
                kind=kind,
                amount=amount,
                account_name=source,
                to_account_name=to_account,
                note=note,
            )
        except ValidationError as exc:
            logger.debug("Heuristic parse rejected %r: %s", text, exc)
            return None


PROMPT = (
    "You extract personal-finance transactions from short Indonesian or English chat messages. "
    "Return ONLY a JSON object with these keys: "
    '{"kind": "Income"|"Expense"|"Transfer", "amount": number, "account_name": string, '
    '"to_account_name": string|null, "category": string, "note": string}. '
    "Amounts use Indonesian shorthand: rb/ribu/k = thousand, jt/juta = million, m = million, "
    "b/t/miliar = billion; 25.000 means twenty-five thousand. "
    "account_name is the account the money leaves (or enters, for income); "
    "to_account_name is only set for transfers. "
    "note is a short description of what the money was for, in the user's words. "
    'If the message is not a transaction, return {"kind": null}.'
)


class OpenAITransactionParser:
    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        fallback: TransactionParser | None = None,
        client: OpenAI | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._fallback = fallback
        self._client = client
        self._client_disabled = False

    def _get_client(self) -> OpenAI | None:
        if self._client is not None:
            return self._client
        if self._client_disabled or not self._api_key:
            return None
        try:
            self._client = OpenAI(api_key=self._api_key)
        except OpenAIError as exc:
            logger.error("Failed to initialise OpenAI client: %s", exc)
            self._client_disabled = True
            return None
        return self._client

    def _call(self, text: str) -> dict[str, Any] | None:
        client = self._get_client()
        if client is None:
            return None
        try:
            response = client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": PROMPT},
                    {"role": "user", "content": text},
                ],
                temperature=0,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or ""
            data = json.loads(content)
        except (OpenAIError, json.JSONDecodeError, IndexError) as exc:
            logger.error("OpenAI parsing failed: %s", exc)
            return None
        if not isinstance(data, dict):
            return None
        logger.info("OpenAI parsed transaction: %s", data)
        return data

    def parse(self, text: str) -> ParsedTransaction | None:
        data = self._call(text)
        if data and data.get("kind"):
            try:
                return ParsedTransaction.model_validate(data)
            except ValidationError as exc:
                logger.warning("Discarding malformed OpenAI result: %s", exc)
        if self._fallback is None:
            return None
        return self._fallback.parse(text)


def build_parser(settings: Settings) -> TransactionParser:
    heuristic = HeuristicTransactionParser()
    if not settings.openai_api_key:
        return heuristic
    return OpenAITransactionParser(settings.openai_api_key, settings.ai_model, fallback=heuristic)
