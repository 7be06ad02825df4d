from gridlens.models.pipeline import QueryPipeline
from gridlens.models.sinks import Sink
from gridlens.models.sources import Source
from gridlens.models.table import Table
from gridlens.models.transforms import Transform
from gridlens.errors import GridLensError

__all__ = ["QueryPipeline", "Sink", "Source", "Table", "Transform", "GridLensError"]
