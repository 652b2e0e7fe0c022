"""
hp-FEM eigenmode driver.

Loads a mesh, applies the configured refinements, builds the H(curl)
domain, samples the generalized eigenproblem and solves it.

Usage:
    python main.py
    python main.py mesh.source=structured mesh.nx=4 mesh.ny=4 solver.kind=dense
    python main.py refinement.orders=[6,6] solver.target=20 solver.num_pairs=6
    python main.py mlflow.enabled=false
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import hydra
import mlflow
from hydra.core.hydra_config import HydraConfig
from omegaconf import DictConfig, OmegaConf

from hpfem import (
    BoundaryCondition,
    Domain,
    HRef,
    HPFemError,
    Mesh,
    PRef,
    SamplingMetrics,
    UniformFieldSpace,
    default_num_workers,
    galerkin_sample_gep,
    get_integral,
    get_shape_fn,
    solve_gep_dense,
    solve_gep_sparse,
)

log = logging.getLogger(__name__)


def build_mesh(cfg: DictConfig) -> Mesh:
    """Create the initial forest from the ``mesh`` config group."""
    source = cfg.source
    if source == "file":
        path = Path(hydra.utils.to_absolute_path(cfg.path))
        if path.suffix == ".json":
            return Mesh.from_file(path)
        return Mesh.from_meshio(path)
    if source == "unit":
        return Mesh.unit()
    if source == "structured":
        return Mesh.structured(cfg.nx, cfg.ny, x0=cfg.x0, y0=cfg.y0, lx=cfg.lx, ly=cfg.ly)
    raise ValueError(f"Unknown mesh source: {source}")


def parse_href(step: DictConfig) -> HRef:
    kind = step.href.upper()
    idx = step.get("idx", None)
    if kind == "T":
        return HRef.T()
    if kind == "U":
        return HRef.U(idx)
    if kind == "V":
        return HRef.V(idx)
    raise ValueError(f"Unknown h-refinement: {step.href}")


def apply_refinements(mesh: Mesh, cfg: DictConfig) -> None:
    """Set the base orders, then run every refinement step in order.

    A step refines every leaf, the leaves touching ``node`` (an (x, y)
    point), or the explicit ``elems`` list.
    """
    if cfg.get("orders") is not None:
        mesh.set_global_expansion_orders(tuple(cfg.orders))

    for step in cfg.get("steps", []) or []:
        targets = None
        if step.get("node") is not None:
            node_id = mesh.node_at(*step.node)
            if node_id is None:
                raise ValueError(f"No mesh node at {list(step.node)}")
            targets = mesh.elems_touching_node(node_id)
        elif step.get("elems") is not None:
            targets = list(step.elems)

        if step.kind == "h":
            href = parse_href(step)
            if targets is None:
                mesh.global_h_refinement(href)
            else:
                mesh.h_refine_elems(targets, href)
        elif step.kind == "p":
            pref = PRef(*step.delta)
            if targets is None:
                mesh.global_p_refinement(pref)
            else:
                mesh.p_refine_elems(targets, pref)
        else:
            raise ValueError(f"Unknown refinement kind: {step.kind}")
        log.info(f"After {step.kind}-step: {mesh.num_elems} elems, {mesh.num_leaves} leaves")


def solve(gep, cfg: DictConfig):
    if cfg.kind == "dense":
        pairs = solve_gep_dense(gep, min_value=cfg.get("min_value"))
        return pairs[: cfg.num_pairs]
    if cfg.kind == "sparse":
        return solve_gep_sparse(gep, target=cfg.target, num_pairs=cfg.num_pairs)
    raise ValueError(f"Unknown solver kind: {cfg.kind}")


def setup_mlflow(cfg: DictConfig) -> str:
    """Point MLflow at the configured store and select the experiment."""
    tracking_uri = cfg.get("tracking_uri", "./mlruns")
    mlflow.set_tracking_uri(tracking_uri)
    experiment_name = cfg.experiment_name
    mlflow.set_experiment(experiment_name)
    log.info(f"MLflow experiment '{experiment_name}' at {tracking_uri}")
    return experiment_name


def run_params(cfg: DictConfig, mesh: Mesh, domain: Domain) -> dict:
    """Flat run parameters for MLflow."""
    max_nu, max_nv = mesh.max_expansion_orders()
    return {
        "mesh_source": cfg.mesh.source,
        "boundary": cfg.domain.boundary,
        "shape_fn": cfg.sampling.shape_fn,
        "a_integral": cfg.sampling.a_integral,
        "b_integral": cfg.sampling.b_integral,
        "solver": cfg.solver.kind,
        "num_elems": mesh.num_elems,
        "num_leaves": mesh.num_leaves,
        "max_order_u": max_nu,
        "max_order_v": max_nv,
        "num_excluded": len(domain.excluded),
    }


def write_outputs(cfg: DictConfig, output_dir: Path, mesh, domain, pairs, shape_fn) -> list[Path]:
    """Write CSV summaries, fields and the mesh plot. Returns the written files."""
    written = [output_dir / "mesh.csv", output_dir / "basis.csv"]
    mesh.to_dataframe().to_csv(written[0], index=False)
    domain.to_dataframe().to_csv(written[1], index=False)

    if cfg.fields and pairs:
        space = UniformFieldSpace(domain, densities=tuple(cfg.densities), shape_fn=shape_fn)
        for k, pair in enumerate(pairs):
            space.xy_fields(f"mode_{k}", pair.normalized_eigenvector())
        written.append(space.to_vtk(output_dir / "fields.vtu"))

    if cfg.plot:
        import matplotlib.pyplot as plt

        from hpfem.plot_style import plot_mesh, save_figure, setup_style

        setup_style()
        fig, ax = plt.subplots()
        plot_mesh(mesh, ax=ax)
        written.append(save_figure(fig, output_dir / "mesh.png"))
        plt.close(fig)
    return written


@hydra.main(version_base=None, config_path="conf", config_name="config")
def main(cfg: DictConfig) -> None:
    log.info(f"Config:\n{OmegaConf.to_yaml(cfg)}")
    output_dir = Path(HydraConfig.get().runtime.output_dir)

    try:
        mesh = build_mesh(cfg.mesh)
        apply_refinements(mesh, cfg.refinement)
        domain = Domain.from_mesh(mesh, boundary=BoundaryCondition(cfg.domain.boundary))

        shape_fn = get_shape_fn(cfg.sampling.shape_fn)
        metrics = SamplingMetrics()
        num_workers = cfg.sampling.num_workers or default_num_workers()
        with ThreadPoolExecutor(max_workers=num_workers) as pool:
            gep = galerkin_sample_gep(
                domain,
                shape_fn=shape_fn,
                a_integral=get_integral(cfg.sampling.a_integral),
                b_integral=get_integral(cfg.sampling.b_integral),
                num_gauss_quad=cfg.sampling.num_gauss_quad,
                pool=pool,
                metrics=metrics,
            )
        metrics.num_workers = num_workers
        pairs = solve(gep, cfg.solver)
    except HPFemError as exc:
        log.error(f"Run failed: {exc}")
        raise

    log.info(f"Sampling metrics:\n{metrics.to_dataframe().to_string(index=False)}")
    for k, pair in enumerate(pairs):
        log.info(f"  mode {k}: lambda = {pair.value:.8f}")

    written = write_outputs(cfg.output, output_dir, mesh, domain, pairs, shape_fn)

    if not cfg.mlflow.enabled:
        return
    setup_mlflow(cfg.mlflow)
    with mlflow.start_run(run_name=cfg.mlflow.get("run_name")) as run:
        mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")
        mlflow.log_params(run_params(cfg, mesh, domain))
        mlflow.log_metrics(metrics.to_mlflow())
        mlflow.log_metrics({f"lambda_{k}": pair.value for k, pair in enumerate(pairs)})
        for path in written:
            mlflow.log_artifact(str(path))
        log.info(f"Logged MLflow run {run.info.run_id[:8]}")


if __name__ == "__main__":
    main()
