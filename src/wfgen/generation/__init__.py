"""Graph generation pipeline.

Expected shared store keys (initialized by WorkflowGenerator.generate):
- requirements: WorkflowRequirements
- timings: StageTimings
- fallbacks, build_warnings: lists appended to by stages
- simplification_passes: int

Keys written during execution:
- analysis, plan, nodes, connections, graph, metadata, validation
- simplifications, result

See individual node docstrings for detailed key usage.
"""

from wfgen.generation.flow import create_generation_flow
from wfgen.generation.generator import WorkflowGenerator

__all__ = ["WorkflowGenerator", "create_generation_flow"]
