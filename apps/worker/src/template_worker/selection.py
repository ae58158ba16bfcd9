from __future__ import annotations

from collections import Counter
import random
import re
from typing import Callable, Protocol, Sequence, TypeVar

T = TypeVar("T")

_ANSWER_PREFIX = re.compile(r"^best main image:\s*", re.IGNORECASE)


def chunked(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    return [list(items[index : index + chunk_size]) for index in range(0, len(items), chunk_size)]


def build_prompt(asset_names: Sequence[str], *, title: str, keywords: str) -> str:
    options = "\n".join(f"- {name}" for name in asset_names)
    return (
        "You are a world-class visual designer for blog templates.\n"
        "Rules:\n"
        "- Prioritize image names that contain any of the title or keyword terms, even partially.\n"
        "- Pick the most relevant and specific match.\n"
        "- Never fabricate a name; choose only from the provided list.\n\n"
        f"Available main images:\n{options}\n\n"
        f'Blog Title: "{title}"\n'
        f'Keywords: "{keywords}"\n\n'
        "Respond with the exact name of the most relevant main image from the list above. "
        "If none are relevant, pick the closest match. Respond with only the name, nothing else."
    )


def extract_pick(content: str) -> str:
    lines = content.strip().splitlines()
    if not lines:
        return ""
    first_line = _ANSWER_PREFIX.sub("", lines[0].strip())
    return first_line.strip().strip("\"'`").strip()


class TieBreaker(Protocol):
    def rank(self, names: Sequence[str]) -> list[str]: ...

    def record_use(self, name: str) -> None: ...


class FirstSeenTieBreaker:
    def rank(self, names: Sequence[str]) -> list[str]:
        return list(names)

    def record_use(self, name: str) -> None:
        return None


class LeastUsedTieBreaker:
    """Prefers assets that were handed out less often, breaking ties randomly."""

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._usage: Counter[str] = Counter()

    def usage(self, name: str) -> int:
        return self._usage[name]

    def rank(self, names: Sequence[str]) -> list[str]:
        keyed = [(self._usage[name], self._rng.random(), name) for name in names]
        return [name for _, _, name in sorted(keyed)]

    def record_use(self, name: str) -> None:
        self._usage[name] += 1


def build_tie_breaker(name: str) -> TieBreaker:
    if name == "first_seen":
        return FirstSeenTieBreaker()
    if name == "least_used":
        return LeastUsedTieBreaker()
    raise ValueError(f"unknown tie breaker: {name}")


class CandidateSelector:
    def __init__(
        self,
        *,
        complete: Callable[[str], str],
        tie_breaker: TieBreaker,
        chunk_size: int = 25,
        max_picks: int = 5,
        rng: random.Random | None = None,
    ) -> None:
        self._complete = complete
        self._tie_breaker = tie_breaker
        self._chunk_size = chunk_size
        self._max_picks = max_picks
        self._rng = rng or random.Random()

    def select(self, asset_names: Sequence[str], *, title: str) -> list[str]:
        shuffled = list(asset_names)
        self._rng.shuffle(shuffled)

        picks: list[str] = []
        for index, chunk in enumerate(chunked(shuffled, self._chunk_size), start=1):
            answer = extract_pick(self._complete(build_prompt(chunk, title=title, keywords=title)))
            if answer in chunk:
                picks.append(answer)
            else:
                print(f"[worker] no valid pick for chunk={index} answer={answer!r}", flush=True)

        unique = list(dict.fromkeys(picks))
        final = self._tie_breaker.rank(unique)[: self._max_picks]

        if len(final) < self._max_picks:
            chosen = set(final)
            unused = [name for name in shuffled if name not in chosen]
            final.extend(unused[: self._max_picks - len(final)])

        for name in final:
            self._tie_breaker.record_use(name)
        return final
