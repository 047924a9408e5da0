"""Cluster agent: semantic keyword clustering with a streamed JSON response."""

from pydantic import BaseModel, Field

from keywordscope.agents.base_agent import BaseAgent
from keywordscope.config import settings


class ClusterAgentInput(BaseModel):
    """Input for cluster agent."""

    keywords: list[str]
    max_keywords: int = Field(default_factory=lambda: settings.clustering_max_keywords)

    @property
    def limited_keywords(self) -> list[str]:
        return self.keywords[: self.max_keywords]


class ClusterAgent(BaseAgent[ClusterAgentInput, str]):
    """Agent that groups keywords into listicle-sized topics.

    The model answers with plain text containing one JSON object; the caller
    parses it incrementally while the response streams in.
    """

    temperature = 0.3

    @property
    def system_prompt(self) -> str:
        return """You are a keyword clustering expert. Group the given keywords into semantic topics.

1. **Grouping rule**:
   - Keywords belong together when one listicle-style article could cover all of them
   - The grouping is about reader intent, not SEO tricks
   - Avoid overly generic topic names such as "Basics" or "General knowledge"

2. **Topic names**:
   - Short and specific
   - Written in the same language as the keywords

3. **Constraints**:
   - Each topic holds at least 2 keywords
   - Each keyword appears in at most one topic
   - Only use keywords from the provided list, copied exactly

4. **Output**:
   - Return a single JSON object and nothing else
   - No markdown code fences, no explanations"""

    @property
    def output_type(self) -> type[str]:
        return str

    def _build_prompt(self, input_data: ClusterAgentInput) -> str:
        keyword_list = ", ".join(input_data.limited_keywords)
        return f"""Cluster these keywords:

{keyword_list}

Respond with JSON in exactly this shape:
{{
  "clusters": {{
    "Topic name 1": ["keyword 1", "keyword 2"],
    "Topic name 2": ["keyword 3", "keyword 4"]
  }}
}}"""
