import io

import numpy as np
import pytest

from slamkit.lie import SE3
from slamkit.pose_graph import (
    PoseEdge,
    PoseGraph,
    PoseVertex,
    jr_inv,
    main,
    read_g2o,
)

SAMPLE = """VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1
VERTEX_SE3:QUAT 1 1 0 0 0 0 0 1
EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 10000 0 0 0 0 0 10000 0 0 0 0 10000 0 0 0 40000 0 0 40000 0 40000
"""


def _truth():
    return [
        SE3(),
        SE3.exp([1.0, 0.0, 0.0, 0.0, 0.0, 0.1]),
        SE3.exp([2.0, 0.1, 0.0, 0.0, 0.05, 0.2]),
    ]


def _graph(perturb: bool) -> PoseGraph:
    truth = _truth()
    graph = PoseGraph()
    deltas = [
        np.zeros(6),
        np.array([0.03, -0.02, 0.01, 0.02, -0.01, 0.03]),
        np.array([-0.02, 0.04, 0.01, -0.03, 0.02, 0.01]),
    ]
    for i, pose in enumerate(truth):
        est = SE3.exp(deltas[i]) * pose if perturb else pose
        graph.add_vertex(PoseVertex(i, est, fixed=(i == 0)))
    for k, (a, b) in enumerate([(0, 1), (1, 2), (0, 2)]):
        graph.add_edge(PoseEdge(k, a, b, truth[a].inverse() * truth[b]))
    return graph


def test_jr_inv_is_identity():
    np.testing.assert_array_equal(jr_inv(SE3.exp([0.1, 0.2, 0.3, 0.1, 0.0, 0.2])), np.eye(6))


def test_read_sample_graph():
    graph = read_g2o(io.StringIO(SAMPLE))
    assert sorted(graph.vertices) == [0, 1]
    assert graph.vertices[0].fixed
    assert not graph.vertices[1].fixed
    assert len(graph.edges) == 1
    assert graph.edges[0].information[0, 0] == 10000
    assert graph.edges[0].information[5, 5] == 40000
    np.testing.assert_allclose(graph.vertices[1].estimate.translation, [1.0, 0.0, 0.0])


def test_consistent_graph_has_zero_error():
    graph = _graph(perturb=False)
    assert graph.total_error() == pytest.approx(0.0, abs=1e-18)
    np.testing.assert_allclose(graph.edges[1].error(graph), np.zeros(6), atol=1e-9)


def test_optimize_recovers_true_poses():
    graph = _graph(perturb=True)
    start = graph.total_error()
    history = graph.optimize(30)
    assert history
    assert history[-1] < start
    assert graph.total_error() < 1e-10
    for vid, pose in enumerate(_truth()):
        diff = (pose.inverse() * graph.vertices[vid].estimate).log()
        assert np.linalg.norm(diff) < 1e-5


def test_fixed_vertex_does_not_move():
    graph = _graph(perturb=True)
    before = graph.vertices[0].estimate.matrix()
    graph.optimize(10)
    np.testing.assert_array_equal(graph.vertices[0].estimate.matrix(), before)


def test_write_read_round_trip():
    graph = _graph(perturb=True)
    buffer = io.StringIO()
    graph.write(buffer)
    text = buffer.getvalue()
    assert text.startswith("VERTEX_SE3:QUAT 0 ")
    again = read_g2o(io.StringIO(text))
    assert sorted(again.vertices) == sorted(graph.vertices)
    assert len(again.edges) == len(graph.edges)
    for vid, vertex in graph.vertices.items():
        np.testing.assert_allclose(again.vertices[vid].estimate.matrix(), vertex.estimate.matrix(), atol=1e-5)
    np.testing.assert_allclose(again.edges[2].information, graph.edges[2].information)


def test_edge_to_missing_vertex_raises():
    text = "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\nEDGE_SE3:QUAT 0 5 1 0 0 0 0 0 1\n"
    with pytest.raises(ValueError):
        read_g2o(io.StringIO(text))


def test_duplicate_vertex_raises():
    graph = PoseGraph()
    graph.add_vertex(PoseVertex(3))
    with pytest.raises(ValueError):
        graph.add_vertex(PoseVertex(3))


def test_main_missing_file_returns_one(tmp_path, capsys):
    assert main([str(tmp_path / "absent.g2o")]) == 1
    assert "does not exist" in capsys.readouterr().out


def test_main_writes_result(tmp_path, capsys):
    source = tmp_path / "graph.g2o"
    buffer = io.StringIO()
    _graph(perturb=True).write(buffer)
    source.write_text(buffer.getvalue(), encoding="utf-8")
    output = tmp_path / "out.g2o"
    assert main([str(source), "--output", str(output)]) == 0
    assert "read total 3 vertices, 3 edges." in capsys.readouterr().out
    result = read_g2o(io.StringIO(output.read_text(encoding="utf-8")))
    assert result.total_error() < 1e-6