"""Ready-made workflow definitions used for demos and seeding."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from .definitions import ai, build_steps, client_validate, human
from .models import WorkflowDefinition


def service_catalog_workflow(
    author_id: Optional[str] = None, category: str = "Banking"
) -> WorkflowDefinition:
    """Seven-step service catalog build, including a client data upload."""
    steps = [
        human(
            "Upload APQC/Base Taxonomy",
            "Upload an Excel or CSV file containing the APQC taxonomy or other process "
            "framework you want to use as a base for your service catalog.",
        ),
        ai(
            "Extract and Structure Taxonomy",
            "You are an expert in business process frameworks and taxonomies. Your task is "
            "to analyze the provided data and extract a structured process taxonomy.",
            "Extract and structure the process taxonomy from the following data:\n"
            "{{taxonomyData}}\n\n"
            "Format as hierarchical JSON with:\n"
            "- L1: Major process areas\n"
            "- L2: Process groups\n"
            "- L3: Processes\n"
            "- L4: Activities\n\n"
            "Include APQC codes where present. Make sure to preserve the hierarchical "
            "relationships between levels.",
        ),
        human(
            "Review and Request Client Data",
            "Review the structured taxonomy extracted by AI. Make any necessary corrections "
            "or adjustments. When ready, request additional data from the client to enrich "
            "the taxonomy.",
        ),
        client_validate(
            "Client Data Upload",
            "Please upload any relevant documents to help us understand your specific "
            "processes. This could include time studies, organization charts, existing "
            "process documentation, or other relevant materials.",
        ),
        ai(
            "Enrich with Intelligence",
            "You are an expert business process consultant with deep expertise in service "
            "catalog development and operational optimization.",
            "Based on the process taxonomy and client data:\n\n"
            "1. Add time estimates per process (from client data or industry benchmarks for "
            "{{category}} if client data is not available)\n"
            "2. Add complexity scores (1-5 scale) based on process characteristics\n"
            "3. Add volume indicators (high/medium/low) based on typical transaction volumes "
            "in {{category}}\n"
            "4. Suggest delivery model for each process: Retain/CoE/BPO/Offshore/Automate\n"
            "5. For each suggestion, provide a brief explanation of your reasoning\n\n"
            "Process Taxonomy:\n{{structuredTaxonomy}}\n\n"
            "Client Data:\n{{clientData}}\n\n"
            "Please provide your recommendations in a structured JSON format that maintains "
            "the hierarchy of the taxonomy.",
        ),
        human(
            "Strategic Review",
            "Review the AI-enriched taxonomy and delivery model recommendations. Provide "
            "strategic insights, override recommendations as needed, and add any additional "
            "context based on your expertise.",
        ),
        ai(
            "Generate Deliverable",
            "You are an expert at creating professional business presentations and reports.",
            "Create a comprehensive service catalog deliverable based on the enriched "
            "taxonomy and strategic insights. The deliverable should include:\n\n"
            "1. Executive summary highlighting key findings and recommendations\n"
            "2. Full taxonomy with delivery model recommendations\n"
            "3. Implementation roadmap with prioritized initiatives\n"
            "4. Strategic considerations and next steps\n\n"
            "Enriched Taxonomy:\n{{enrichedTaxonomy}}\n\n"
            "Strategic Insights:\n{{strategicInsights}}\n\n"
            "Format the output as a professional report suitable for executive presentation.",
        ),
    ]
    return WorkflowDefinition(
        title=f"Service Catalog - {category}",
        description=(
            f"A comprehensive workflow for developing a service catalog for {category} "
            "organizations, leveraging APQC taxonomy and AI-driven analysis."
        ),
        steps=build_steps(steps),
        author_id=author_id,
        version_notes="Initial version",
        category="service_catalog",
    )


def content_creation_workflow(author_id: Optional[str] = None) -> WorkflowDefinition:
    steps = [
        ai(
            "Generate Topic Ideas",
            "You are a content strategist. Generate 5 engaging blog post topics.",
            "Generate topics for a tech blog about {{theme}}.",
        ),
        human(
            "Review and Select Topic",
            "Review the generated topics and select the most promising one.",
        ),
    ]
    return WorkflowDefinition(
        title="Content Creation Workflow",
        description="A workflow for creating blog posts with AI assistance",
        steps=build_steps(steps),
        author_id=author_id,
        version_notes="Initial version",
        category="content",
        is_public=True,
    )


def process_taxonomy_workflow(author_id: Optional[str] = None) -> WorkflowDefinition:
    steps = [
        human(
            "Indicate the sector / industry",
            "Specify the industry sector for the taxonomy framework.",
        ),
        ai(
            "Pull APQC of said sector / industry and function",
            "You are a business process expert. Analyze the APQC framework for the "
            "specified industry.",
            "Provide APQC process categories for the {{industry}} sector.",
        ),
        human(
            "Share any client business process documentation",
            "Upload or provide any existing business process documentation from the client.",
        ),
        ai(
            "Tailor taxonomy to the client and indicate any key nuances to consider",
            "You are a business process consultant. Create a customized taxonomy based on "
            "APQC and client documentation.",
            "Create a tailored process taxonomy for {{industry}} that incorporates these "
            "client-specific nuances:\n{{clientDocumentation}}",
        ),
        ai(
            "Create question set and focus process areas for human to leverage in client discussion",
            "You are a business consultant. Create strategic questions for client engagement.",
            "Generate a comprehensive question set for client discussions about these "
            "process areas:\n{{taxonomy}}",
        ),
    ]
    return WorkflowDefinition(
        title="Process Taxonomy Creation",
        description=(
            "Workflow for creating a standard common process framework taxonomy for "
            "baseline purposes"
        ),
        steps=build_steps(steps),
        author_id=author_id,
        version_notes="Initial version",
        category="business",
        is_public=True,
    )


PREDEFINED: Dict[str, Callable[..., WorkflowDefinition]] = {
    "service-catalog": service_catalog_workflow,
    "content-creation": content_creation_workflow,
    "process-taxonomy": process_taxonomy_workflow,
}
