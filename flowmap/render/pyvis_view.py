from __future__ import annotations

from pyvis.network import Network

from flowmap.render.scene import SceneRenderer


def build_network(scene: SceneRenderer, height: str = "650px") -> Network:
    """
    pyvis network of the current scene. Physics is off: coordinates come
    from the force layout, so the browser only draws.
    """
    net = Network(
        height=height,
        width="100%",
        directed=True,
        bgcolor="#0E1117",
        font_color="#E6EDF3",
        cdn_resources="in_line",
    )
    net.toggle_physics(False)

    for g in scene.nodes.values():
        title = (
            f"address={g.id}<br>"
            f"balance={g.balance.text} CKB<br>"
            f"type={g.type.text}<br>"
            f"{g.more.text}"
        )
        net.add_node(
            g.id,
            label=f"{g.type.text}\n{g.balance.text}\n{g.address.text}",
            title=title,
            color=g.fill,
            size=g.radius,
            x=g.cx,
            y=g.cy,
            physics=False,
        )

    for g in scene.edges.values():
        net.add_edge(
            g.source,
            g.target,
            title=f"{g.label.text} CKB",
            label=g.label.text,
            width=g.stroke_width,
        )

    return net


def render_html(scene: SceneRenderer, height: str = "650px") -> str:
    return build_network(scene, height=height).generate_html(notebook=False)
