"""Feed processors, each a graph-to-graph transformation."""

from .remove_orphans import remove_orphans
from .remeasure_shapes import remeasure_shapes
from .minimize_shapes import minimize_shapes
from .remove_shape_duplicates import remove_shape_duplicates
from .remove_route_duplicates import remove_route_duplicates
from .remove_service_duplicates import remove_service_duplicates
from .minimize_services import minimize_services
from .minimize_frequencies import minimize_frequencies
from .minimize_ids import minimize_ids

__all__ = [
    'remove_orphans',
    'remeasure_shapes',
    'minimize_shapes',
    'remove_shape_duplicates',
    'remove_route_duplicates',
    'remove_service_duplicates',
    'minimize_services',
    'minimize_frequencies',
    'minimize_ids',
]
