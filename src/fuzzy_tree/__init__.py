"""The fuzzy_tree package grows tree skeletons and fills them with particles.

This package offers:
  - Space-colonization growth of a branching skeleton inside an envelope.
  - Skeleton simplification and bottom-up width propagation.
  - A particle relaxation engine ("fuzzy object") that fills a closed
    triangle mesh with a Lennard-Jones particle swarm.
  - A wind sway model and world-space aggregation of per-branch particles.

Submodules:
  - branch: Branch node of the skeleton.
  - envelope: Crown envelope and attraction-point sampling.
  - growth: SpaceColonization growth engine.
  - skeleton: Simplification, width propagation and a demo skeleton.
  - mesh: Mesh collision oracle.
  - primitives: Sphere and cylinder mesh generators.
  - fuzzy_object: FuzzyObject particle relaxation engine.
  - wind: WindModel and WindContext.
  - tree: Tree pipeline and export.

Classes:
  Branch, Envelope, SpaceColonization, Mesh, FuzzyObject, WindModel, Tree
"""

from .config import (
    config,
    configure,
    use,
    seed,
    rng,
    cdist,
    norm,
    set_log_level,
)

from fuzzy_tree.branch import Branch
from fuzzy_tree.envelope import Envelope, cone_profile, parabolic_profile
from fuzzy_tree.fuzzy_object import BuildState, FuzzyObject, lennard_jones_force
from fuzzy_tree.growth import SpaceColonization
from fuzzy_tree.mesh import Mesh
from fuzzy_tree.parameters import FuzzyParameters, TreeParameters, WindParameters
from fuzzy_tree.primitives import cylinder_mesh, sphere_mesh
from fuzzy_tree.skeleton import build_dummy_tree, propagate_widths, simplify
from fuzzy_tree.tree import Tree
from fuzzy_tree.wind import WindContext, WindModel

__all__ = [
    # Core classes
    "Branch",
    "BuildState",
    "Envelope",
    "FuzzyObject",
    "FuzzyParameters",
    "Mesh",
    "SpaceColonization",
    "Tree",
    "TreeParameters",
    "WindContext",
    "WindModel",
    "WindParameters",
    # Functions
    "build_dummy_tree",
    "cone_profile",
    "cylinder_mesh",
    "lennard_jones_force",
    "parabolic_profile",
    "propagate_widths",
    "simplify",
    "sphere_mesh",
    # Configuration
    "config",
    "configure",
    "use",
    "seed",
    "rng",
    "cdist",
    "norm",
    "set_log_level",
]
