"""Jinja2 prompt templates for the tier workers."""

from typing import Any

from jinja2 import Environment, StrictUndefined

_env = Environment(undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)

SYSTEM_PROMPT = (
    "You are a meticulous research analyst. Answer only with the JSON "
    "structure requested, without commentary."
)

MICRO_TEMPLATE = _env.from_string("""\
Analyze the following research item{% if domain %} from the field of {{ domain }}{% endif %}.

Title: {{ item.title or "(untitled)" }}
{% if item.year %}Year: {{ item.year }}
{% endif %}
{% if item.venue %}Venue: {{ item.venue }}
{% endif %}
Abstract:
{{ item.abstract or "(no abstract)" }}
{% if content %}

Excerpt:
{{ content }}
{% endif %}
{% if context_hints %}

Focus on these open questions from earlier iterations:
{% for hint in context_hints %}
- {{ hint }}
{% endfor %}
{% endif %}

Return a JSON object with keys:
  "problem": one sentence naming the research problem,
  "novelty": one sentence naming what is new,
  "approach": one sentence naming the method,
  "contributions": list of {"text": str, "kind": str},
  "limitations": list of {"text": str, "kind": str},
  "gaps": list of {"text": str, "kind": str, "priority": "high"|"medium"|"low"},
  "methodology": {"techniques": [str], "datasets": [str], "metrics": [str]}
""")

MESO_TEMPLATE = _env.from_string("""\
Below are {{ clusters|length }} clusters of related research items{% if domain %} in {{ domain }}{% endif %}.
Give each cluster a short theme label and a one-sentence description.

{% for cluster in clusters %}
Cluster {{ cluster.id }} ({{ cluster.size }} items)
  Keywords: {{ cluster.keywords[:10]|join(", ") }}
  Titles: {{ cluster.titles[:5]|join("; ") }}
{% endfor %}

Return a JSON object: {"themes": [{"cluster_id": str, "label": str, "description": str}]}
""")

META_TEMPLATE = _env.from_string("""\
Iteration {{ iteration }} of a recursive literature analysis{% if domain %} in {{ domain }}{% endif %}.

Top research gaps (ranked):
{% for gap in gaps %}
{{ gap.rank }}. {{ gap.gap }} (score {{ "%.2f"|format(gap.total_score) }})
{% endfor %}

Cross-domain patterns:
{% for pattern in patterns %}
- {{ pattern.description }}
{% else %}
- none detected
{% endfor %}

Research frontiers:
{% for frontier in frontiers %}
- {{ frontier.theme }} ({{ frontier.criterion }})
{% else %}
- none detected
{% endfor %}

Write a JSON object {"synthesis": str, "directions": [{"title": str, "rationale": str}]}
summarizing where the field should go next.
""")


def render_micro_prompt(**context: Any) -> str:
    return MICRO_TEMPLATE.render(**context)


def render_meso_prompt(**context: Any) -> str:
    return MESO_TEMPLATE.render(**context)


def render_meta_prompt(**context: Any) -> str:
    return META_TEMPLATE.render(**context)
