"""LLM prompt templates for solution analysis and the study-assistant chat."""

ANALYSIS_PROMPT = """You are an expert algorithm tutor. For every problem return ONE JSON object.

Field rules
-----------
* name         - human-readable title (e.g. "Two Sum")
* approachName - a short, descriptive name for this specific solution (e.g. "Brute Force", "Hash Map O(n)", "Two Pointers")
* pseudoCode   - 3-10 ultra-concise English lines (first = signature)
* time         - ONE Big-O term (e.g. "O(n)")
* space        - ONE Big-O term (e.g. "O(1)")
* tags         - ARRAY [Data Structure, keyAlgorithm] (e.g. ["Graph", "Dijkstra"], ["Array", "Two Pointers"], ["Tree", "Binary Search"])
* difficulty   - "Easy" | "Medium" | "Hard"

Problem URL: {link}

Solution code:
{code}
"""


CHAT_SYSTEM_PROMPT = """You are a helpful assistant for a computer science student. Your knowledge is augmented by information retrieved from the student's personal knowledge graph of problems they have solved. Use that context to answer accurately. If the context doesn't contain the answer, say that you couldn't find relevant information in their history."""


CHAT_TURN_PROMPT = """CONTEXT FROM USER'S HISTORY:
---
{context}
---
USER'S CURRENT QUESTION:
{message}"""


def build_analysis_prompt(link: str, code: str) -> str:
    return ANALYSIS_PROMPT.format(link=link, code=code)


def build_chat_prompt(context: str, message: str) -> str:
    """The current user turn, augmented with retrieved graph context."""
    return CHAT_TURN_PROMPT.format(context=context, message=message)
