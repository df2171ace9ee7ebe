"""Grow a tree, fill every branch with particles and export the result.

Writes ``tree-skeleton.vtu`` (line cells with widths) and
``tree-particles.vtu`` (vertex cells) to the current directory; both open
in ParaView.
"""

import logging

import fuzzy_tree as ft
from fuzzy_tree import FuzzyParameters, Tree, TreeParameters, cone_profile
from fuzzy_tree.envelope import Envelope


class Parameters(TreeParameters):
    """Tree settings used by this example.

    A cone-shaped crown of radius 3 sitting on a trunk of height 4, with
    50 attraction points.
    """

    def __init__(self):
        super().__init__(
            trunk_height=4.0,
            branch_segment_length=1.0,
            crown_height=4.0,
            crown_radius=3.0,
            attraction_point_count=50,
            min_branch_width=0.3,
            tip_width=0.15,
        )


def main():
    logging.basicConfig(level=logging.INFO)
    ft.seed(7)

    params = Parameters()
    envelope = Envelope.from_parameters(
        params, cone_profile(params.crown_height, params.crown_radius)
    )
    tree = Tree(
        params,
        fuzzy_params=FuzzyParameters.example(),
        envelope=envelope,
        density_reference_width=1.0,
    )

    tree.grow()
    tree.save("tree-skeleton.vtu")

    tree.build_particles(max_steps=2000)
    print(f"{tree.particle_count()} particles in {len(tree.branches())} branches")
    tree.save_particles("tree-particles.vtu")


if __name__ == "__main__":
    main()
