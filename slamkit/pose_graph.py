"""Pose-graph optimization over SE(3) with Lie-algebra errors, in g2o text format."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from typing import TextIO

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
_DIM = 6


def jr_inv(error: SE3) -> np.ndarray:
    """Inverse right Jacobian of SE(3) near ``error``, approximated by the identity."""
    if not isinstance(error, SE3):
        raise TypeError("error must be an SE3")
    return np.eye(_DIM)


@dataclass
class PoseVertex:
    id: int
    estimate: SE3 = field(default_factory=SE3)
    fixed: bool = False


@dataclass
class PoseEdge:
    """Relative-pose constraint between two vertices."""

    id: int
    first: int
    second: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(_DIM))

    def error(self, graph: PoseGraph) -> np.ndarray:
        """``log(measurement^-1 * v1^-1 * v2)``."""
        v1 = graph.vertices[self.first].estimate
        v2 = graph.vertices[self.second].estimate
        return (self.measurement.inverse() * v1.inverse() * v2).log()

    def _jacobians(self, graph: PoseGraph, error: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        j = jr_inv(SE3.exp(error))
        adj = graph.vertices[self.second].estimate.inverse().adjoint()
        return -j @ adj, j @ adj


def _fmt(values) -> str:
    return " ".join(f"{v:g}" for v in values)


@dataclass
class PoseGraph:
    vertices: dict[int, PoseVertex] = field(default_factory=dict)
    edges: list[PoseEdge] = field(default_factory=list)

    def add_vertex(self, vertex: PoseVertex) -> None:
        if vertex.id in self.vertices:
            raise ValueError(f"duplicate vertex id {vertex.id}")
        self.vertices[vertex.id] = vertex

    def add_edge(self, edge: PoseEdge) -> None:
        for vid in (edge.first, edge.second):
            if vid not in self.vertices:
                raise ValueError(f"edge {edge.id} refers to unknown vertex {vid}")
        self.edges.append(edge)

    def total_error(self) -> float:
        """Sum of ``e^T * information * e`` over all edges."""
        total = 0.0
        for edge in self.edges:
            e = edge.error(self)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, index: dict[int, int]):
        size = _DIM * len(index)
        gradient = np.zeros(size)
        rows, cols, data = [], [], []
        block_rows = np.repeat(np.arange(_DIM), _DIM)
        block_cols = np.tile(np.arange(_DIM), _DIM)
        for edge in self.edges:
            e = edge.error(self)
            ji, jj = edge._jacobians(self, e)
            blocks = [(index[vid], jac) for vid, jac in ((edge.first, ji), (edge.second, jj)) if vid in index]
            for a, ja in blocks:
                gradient[a * _DIM : (a + 1) * _DIM] += ja.T @ edge.information @ e
                for c, jc in blocks:
                    rows.append(block_rows + a * _DIM)
                    cols.append(block_cols + c * _DIM)
                    data.append((ja.T @ edge.information @ jc).ravel())
        if data:
            hessian = sparse.coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))), shape=(size, size)
            ).tocsc()
        else:
            hessian = sparse.csc_matrix((size, size))
        return hessian, gradient

    def _apply(self, index: dict[int, int], dx: np.ndarray) -> None:
        for vid, k in index.items():
            vertex = self.vertices[vid]
            vertex.estimate = SE3.exp(dx[k * _DIM : (k + 1) * _DIM]) * vertex.estimate

    def optimize(self, iterations: int = 30) -> list[float]:
        """Levenberg-Marquardt with left-multiplicative updates; returns chi2 after each iteration."""
        free = [vid for vid, v in self.vertices.items() if not v.fixed]
        index = {vid: k for k, vid in enumerate(free)}
        chi2_history: list[float] = []
        if not index or not self.edges:
            return chi2_history
        identity = sparse.identity(_DIM * len(index), format="csc")
        chi2 = self.total_error()
        lam = None
        nu = 2.0
        for _ in range(iterations):
            hessian, gradient = self._linearize(index)
            if lam is None:
                lam = 1e-5 * max(float(hessian.diagonal().max()), 1e-12)
            accepted = False
            for _attempt in range(10):
                dx = np.atleast_1d(spsolve(hessian + lam * identity, -gradient))
                if np.all(np.isfinite(dx)):
                    saved = {vid: self.vertices[vid].estimate for vid in index}
                    self._apply(index, dx)
                    new_chi2 = self.total_error()
                    predicted = float(dx @ (lam * dx - gradient))
                    if np.isfinite(new_chi2) and predicted > 0.0 and new_chi2 < chi2:
                        rho = (chi2 - new_chi2) / predicted
                        lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                        nu = 2.0
                        chi2 = new_chi2
                        accepted = True
                        break
                    for vid, estimate in saved.items():
                        self.vertices[vid].estimate = estimate
                lam *= nu
                nu *= 2.0
            chi2_history.append(chi2)
            if not accepted:
                break
        return chi2_history

    def write(self, stream: TextIO) -> None:
        """Write vertices and edges as g2o ``SE3:QUAT`` records."""
        for vertex in self.vertices.values():
            q = vertex.estimate.so3.quaternion()
            stream.write(f"{VERTEX_TAG} {vertex.id} {_fmt(vertex.estimate.translation)} {_fmt(q.coeffs())}\n")
        for edge in self.edges:
            m = edge.measurement
            q = m.so3.quaternion()
            upper = [edge.information[i, j] for i in range(_DIM) for j in range(i, _DIM)]
            stream.write(
                f"{EDGE_TAG} {edge.first} {edge.second} {_fmt(m.translation)} {_fmt(q.coeffs())} {_fmt(upper)} \n"
            )


def _pose_from(values: list[float]) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3.from_quaternion(Quaternion(qw, qx, qy, qz), [tx, ty, tz])


def read_g2o(stream: TextIO) -> PoseGraph:
    """Read a pose graph; vertex 0 is held fixed and unknown records are skipped."""
    graph = PoseGraph()
    edge_count = 0
    for lineno, line in enumerate(stream, start=1):
        fields = line.split()
        if not fields:
            continue
        tag = fields[0]
        try:
            if tag == VERTEX_TAG:
                if len(fields) < 9:
                    raise ValueError("vertex needs an id and 7 pose values")
                vid = int(fields[1])
                pose = _pose_from([float(f) for f in fields[2:9]])
                graph.add_vertex(PoseVertex(vid, pose, fixed=(vid == 0)))
            elif tag == EDGE_TAG:
                if len(fields) < 10:
                    raise ValueError("edge needs two ids and 7 pose values")
                first, second = int(fields[1]), int(fields[2])
                measurement = _pose_from([float(f) for f in fields[3:10]])
                information = np.eye(_DIM)
                upper = [float(f) for f in fields[10:]]
                cells = [(i, j) for i in range(_DIM) for j in range(i, _DIM)]
                for (i, j), value in zip(cells, upper):
                    information[i, j] = value
                    information[j, i] = value
                graph.add_edge(PoseEdge(edge_count, first, second, measurement, information))
                edge_count += 1
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
    return graph


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Optimize a g2o SE3 pose graph.")
    parser.add_argument("graph", help="input .g2o file")
    parser.add_argument("--output", default="result_lie.g2o")
    parser.add_argument("--iterations", type=int, default=30)
    args = parser.parse_args(argv)

    try:
        with open(args.graph, encoding="utf-8") as stream:
            graph = read_g2o(stream)
    except FileNotFoundError:
        print(f"file {args.graph} does not exist.")
        return 1
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    for i, chi2 in enumerate(graph.optimize(args.iterations)):
        print(f"iteration= {i}\t chi2= {chi2:g}")
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as out:
        graph.write(out)
    return 0


if __name__ == "__main__":
    sys.exit(main())