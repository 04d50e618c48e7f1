"""Result schemas for provider assessments.

These are the trust boundary for backend output: parsed JSON becomes a
typed result only if it validates here. Field names are snake_case in
Python and camelCase on the wire (the shape the prompts ask for).
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for models that accept both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


class BaseAnalysisResult(WireModel):
    """Fields every domain result carries."""

    provider: str = Field(description="Provider id that produced this result")
    overall_score: float = Field(alias="overallScore", ge=0, le=100)


# --- Smart contract audit ---


class SecurityFinding(WireModel):
    title: str
    severity: Literal["critical", "high", "medium", "low", "informational"]
    description: str
    location: Optional[str] = Field(default=None, description="e.g. 'Line 42, function transfer()'")
    recommendation: str


class GasOptimization(WireModel):
    title: str
    potential_savings: str = Field(alias="potentialSavings", description="e.g. '~2000 gas per call'")
    description: str
    location: Optional[str] = None
    recommendation: str


class ContractAnalysisResult(BaseAnalysisResult):
    security_score: float = Field(alias="securityScore", ge=0, le=100)
    gas_efficiency_score: float = Field(alias="gasEfficiencyScore", ge=0, le=100)
    code_quality_score: float = Field(alias="codeQualityScore", ge=0, le=100)
    security_findings: list[SecurityFinding] = Field(alias="securityFindings")
    gas_optimizations: list[GasOptimization] = Field(alias="gasOptimizations")
    summary: str
    strengths: list[str]
    weaknesses: list[str]


# --- UI/UX review ---


class CategoryScore(WireModel):
    score: float = Field(ge=0, le=100)
    observations: list[str]


class UXCategories(WireModel):
    color_contrast: CategoryScore = Field(alias="colorContrast")
    typography: CategoryScore
    layout_composition: CategoryScore = Field(alias="layoutComposition")
    navigation: CategoryScore
    accessibility: CategoryScore
    visual_hierarchy: CategoryScore = Field(alias="visualHierarchy")
    whitespace: CategoryScore
    consistency: CategoryScore


class Recommendation(WireModel):
    severity: Literal["low", "medium", "high", "critical"]
    category: str
    title: str
    description: str


class UXAnalysisResult(BaseAnalysisResult):
    categories: UXCategories
    recommendations: list[Recommendation]
    summary: str


RESULT_SCHEMAS: dict[str, type[BaseAnalysisResult]] = {
    "base": BaseAnalysisResult,
    "contract_analysis": ContractAnalysisResult,
    "ux_analysis": UXAnalysisResult,
}
