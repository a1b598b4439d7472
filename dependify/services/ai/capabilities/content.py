"""
Content skills: blog posts, social captions and repurposing.

Blog and repurpose run on the capable tier. Captions are short enough for
the local model and fall back to the cheap remote tier.
"""
from typing import Any, Dict, List, Optional

from dependify.services.ai.capabilities.base import parse_skill_output, require_fields
from dependify.services.ai.llm_client import (
    LocalModelClient,
    ModelClient,
    generate_with_local_fallback,
)
from dependify.services.ai.registry import SkillDefinition
from dependify.services.ai.schema import ModelTier, TenantContext, ToolCategory

BLOG_GENERATE_ID = "content.blog.generate"
SOCIAL_CAPTION_ID = "content.social.caption"
REPURPOSE_ID = "content.repurpose"

BLOG_SYSTEM_PROMPT = (
    "You are an expert SEO content writer. Write engaging, well-researched blog posts "
    "that rank well in search engines. Use proper heading hierarchy (H1 for title, H2 for "
    "sections, H3 for subsections). Include the target keyword naturally throughout. "
    "Write in an authoritative but accessible tone."
)

CAPTION_SYSTEM_PROMPT = (
    "You are a social media content expert. Write captions that drive engagement "
    "and match each platform's best practices."
)

REPURPOSE_SYSTEM_PROMPT = (
    "You are a content repurposing expert. Transform long-form content into multiple "
    "engaging formats while preserving the core message and adapting tone for each medium."
)

PLATFORM_GUIDES: Dict[str, str] = {
    "instagram": "Instagram: 125-150 words, storytelling, calls to action, 5-10 hashtags at end",
    "facebook": "Facebook: 40-80 words, question-based, conversational",
    "twitter": "Twitter: max 280 chars, punchy, trending hashtags",
    "linkedin": "LinkedIn: professional, insightful, 150-200 words, industry value",
    "tiktok": "TikTok: energetic, trend-aware, 100-150 chars",
}

REPURPOSE_SOURCE_LIMIT = 3000


def _lines(*lines: Optional[str]) -> str:
    return "\n".join(line for line in lines if line)


def blog_generate_skill(model_client: ModelClient) -> SkillDefinition:
    async def handler(input: Dict[str, Any], context: TenantContext) -> Any:
        keyword, topic = require_fields(input, "keyword", "topic")
        word_count = input.get("wordCount") or 1200
        audience = input.get("audience")
        tone = input.get("tone") or "professional"
        market = input.get("market") or context.market.value

        prompt = _lines(
            f"Write a {word_count}-word blog post for the following:",
            f'- Target keyword: "{keyword}"',
            f"- Topic: {topic}",
            f"- Target audience: {audience}" if audience else None,
            f"- Tone: {tone}",
            f"- Market/region: {market}",
            "",
            "Return a JSON object with:",
            "{",
            '  "title": "H1 title with keyword",',
            '  "metaTitle": "60-char SEO title",',
            '  "metaDescription": "155-char meta description",',
            '  "body": "Full markdown body with H2/H3 headings",',
            '  "estimatedReadTime": number (minutes),',
            '  "suggestedTags": ["tag1", "tag2"]',
            "}",
        )

        text = await model_client.generate_text(
            prompt,
            system_prompt=BLOG_SYSTEM_PROMPT,
            tier=ModelTier.CAPABLE,
            max_tokens=4096,
            agent=BLOG_GENERATE_ID,
        )
        return parse_skill_output(
            BLOG_GENERATE_ID,
            text,
            lambda raw: {"title": topic, "body": raw, "metaDescription": "", "suggestedTags": []},
        )

    return SkillDefinition(
        id=BLOG_GENERATE_ID,
        name="Generate Blog Post",
        description=(
            "Generate a full, SEO-optimized blog post from a keyword and brief. Returns title, "
            "meta description, and full body with markdown formatting."
        ),
        category=ToolCategory.CONTENT,
        handler=handler,
        input_schema={
            "properties": {
                "keyword": {"type": "string", "description": "Target SEO keyword"},
                "topic": {"type": "string", "description": "Blog post topic or angle"},
                "wordCount": {"type": "number", "description": "Target word count (default 1200)"},
                "audience": {"type": "string", "description": "Target audience description"},
                "tone": {"type": "string", "description": "Writing tone (professional, conversational, etc)"},
                "market": {"type": "string", "description": "Market context (NG, US, UK, etc)"},
            },
            "required": ["keyword", "topic"],
        },
        model_tier=ModelTier.CAPABLE,
        system_prompt=BLOG_SYSTEM_PROMPT,
    )


def social_caption_skill(
    model_client: ModelClient,
    local_client: Optional[LocalModelClient] = None,
) -> SkillDefinition:
    async def handler(input: Dict[str, Any], context: TenantContext) -> Any:
        platform, topic = require_fields(input, "platform", "topic")
        tone = input.get("tone") or "engaging"
        include_hashtags = input.get("includeHashtags", True)
        content_source = input.get("contentSource")

        prompt = _lines(
            f"Write a {tone} {platform} caption about: {topic}",
            f"Platform guide: {PLATFORM_GUIDES.get(platform, PLATFORM_GUIDES['instagram'])}",
            f"Based on: {content_source}" if content_source else None,
            "Include relevant hashtags." if include_hashtags else "No hashtags.",
            "",
            'Return JSON: { "caption": "...", "hashtags": ["..."] }',
        )

        text = await generate_with_local_fallback(
            local_client,
            model_client,
            prompt,
            system_prompt=CAPTION_SYSTEM_PROMPT,
            agent=SOCIAL_CAPTION_ID,
        )
        return parse_skill_output(
            SOCIAL_CAPTION_ID,
            text,
            lambda raw: {"caption": raw, "hashtags": []},
        )

    return SkillDefinition(
        id=SOCIAL_CAPTION_ID,
        name="Generate Social Caption",
        description="Generate an engaging social media caption optimized for a specific platform.",
        category=ToolCategory.CONTENT,
        handler=handler,
        input_schema={
            "properties": {
                "platform": {"type": "string", "enum": sorted(PLATFORM_GUIDES)},
                "topic": {"type": "string"},
                "tone": {"type": "string"},
                "includeHashtags": {"type": "boolean"},
                "contentSource": {"type": "string", "description": "Source content to base caption on"},
            },
            "required": ["platform", "topic"],
        },
        model_tier=ModelTier.LOCAL,
        system_prompt=CAPTION_SYSTEM_PROMPT,
    )


def repurpose_skill(model_client: ModelClient) -> SkillDefinition:
    async def handler(input: Dict[str, Any], context: TenantContext) -> Any:
        source_content, target_formats = require_fields(input, "sourceContent", "targetFormats")
        if isinstance(target_formats, str):
            target_formats = [target_formats]
        formats: List[str] = [str(f) for f in target_formats]
        source_type = input.get("sourceType") or "blog"

        prompt = _lines(
            f"Repurpose this {source_type} into the following formats: {', '.join(formats)}",
            "",
            "Original content:",
            str(source_content)[:REPURPOSE_SOURCE_LIMIT],
            "",
            "Return JSON with each format as a key:",
            "{",
            '  "instagram": { "caption": "...", "hashtags": [...] },',
            '  "facebook": { "caption": "..." },',
            '  "twitter": { "tweets": ["tweet1", "tweet2", "tweet3"] },',
            '  "linkedin": { "post": "..." },',
            '  "email": { "subject": "...", "preview": "...", "body": "..." }',
            "}",
            "Only include requested formats.",
        )

        text = await model_client.generate_text(
            prompt,
            system_prompt=REPURPOSE_SYSTEM_PROMPT,
            tier=ModelTier.CAPABLE,
            max_tokens=4096,
            agent=REPURPOSE_ID,
        )
        return parse_skill_output(REPURPOSE_ID, text, lambda raw: {"raw": raw})

    return SkillDefinition(
        id=REPURPOSE_ID,
        name="Repurpose Content",
        description=(
            "Repurpose a blog post or content piece into multiple formats "
            "(social posts, email newsletter, short-form snippets)."
        ),
        category=ToolCategory.CONTENT,
        handler=handler,
        input_schema={
            "properties": {
                "sourceContent": {"type": "string", "description": "Original content to repurpose"},
                "sourceType": {"type": "string", "enum": ["blog", "social", "email"]},
                "targetFormats": {
                    "type": "array",
                    "items": {
                        "type": "string",
                        "enum": ["instagram", "facebook", "twitter", "linkedin", "email", "threads"],
                    },
                },
            },
            "required": ["sourceContent", "targetFormats"],
        },
        model_tier=ModelTier.CAPABLE,
        system_prompt=REPURPOSE_SYSTEM_PROMPT,
    )


def content_skills(
    model_client: ModelClient,
    local_client: Optional[LocalModelClient] = None,
) -> List[SkillDefinition]:
    return [
        blog_generate_skill(model_client),
        social_caption_skill(model_client, local_client),
        repurpose_skill(model_client),
    ]
