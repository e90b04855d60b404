import json

from digest_functions.item_schemas import (
    DEDUP_ITEM_SCHEMA,
    SUMMARY_ITEM_SCHEMA,
    VALID_CATEGORIES,
)
from digest_functions.schema_json_parser import STRING


def render_output_format(fields, examples):
    """
    Render the {"items": [...]} example block in schema order.

    The parser anchors string boundaries on this order, so the prompt and
    the schema are rendered from the same declarations.

    Args:
        fields: Ordered FieldDef list
        examples: Mapping of field name to example value

    Returns:
        str: Pretty-printed JSON example
    """
    item = {}
    for field in fields:
        default = "..." if field.kind == STRING else ["..."]
        item[field.name] = examples.get(field.name, default)
    return json.dumps({"items": [item]}, indent=2)


dedup_system_prompt = r"""
You are a tech news processor. Your job is to:
1. Identify duplicate stories across multiple sources (same underlying news appearing on HN, Reddit, Lobsters, or dev.to)
2. Categorize each unique story into exactly one category

## CATEGORIES
- ai-ml: Artificial intelligence, machine learning, LLMs, computer vision, neural networks, data science
- development: Programming languages, frameworks, tools, best practices, frontend/backend, software engineering
- infrastructure: DevOps, cloud, databases, security, networking, systems, containers, deployment
- career: Industry news, job market, layoffs, company culture, career advice, hiring, workplace
- other: Trending topics that don't fit above categories

## DEDUPLICATION RULES
- Stories are duplicates if they discuss the same underlying news, article, or topic
- URLs pointing to the same domain/path (ignoring query params) are definitely duplicates
- Similar titles about the same announcement/event are likely duplicates
- When merging duplicates, keep the most descriptive title
- Combine source attributions from all duplicate sources

## OUTPUT FORMAT
Return ONLY valid JSON matching this exact structure, with the keys of each item in exactly this order:
""" + render_output_format(
    DEDUP_ITEM_SCHEMA,
    {
        "title": "Most descriptive title for this story",
        "url": "Primary URL to the original article/content",
        "category": "|".join(VALID_CATEGORIES),
        "source_ids": ["id1", "id2"],
    },
) + r"""

## IMPORTANT
- source_ids must contain the original item IDs that were merged
- Each item can only have one category
- Return ONLY the JSON, no explanation or markdown
"""


summary_system_prompt = r"""
You are a tech news analyst writing for experienced software engineers and tech professionals.

For each news item, generate:
1. A brief summary (2-3 sentences) suitable for quick scanning
2. An extended analysis paragraph with deeper context and significance
3. A community sentiment summary based on the provided comments

## GUIDELINES
- Target audience: Tech professionals with deep technical knowledge
- Skip basic explanations - assume the reader understands technical concepts
- Be direct and information-dense
- Focus on what's new, why it matters, and technical implications
- For community sentiment, capture the main themes and concerns from the comments
- If no comments are provided, base sentiment on likely community reaction given the topic

## OUTPUT FORMAT
Return ONLY valid JSON matching this exact structure, with the keys of each item in exactly this order:
""" + render_output_format(
    SUMMARY_ITEM_SCHEMA,
    {
        "id": "item_id",
        "summary": "2-3 sentence summary...",
        "extended_summary": "Extended analysis paragraph...",
        "sentiment": "Community sentiment summary...",
    },
) + r"""

## IMPORTANT
- Return ONLY the JSON, no explanation or markdown
- Use the exact item IDs provided in the input
- Each field should be a complete, standalone piece of text
"""
