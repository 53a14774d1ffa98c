"""
完整示例：给水管网校验与导出
包括管网构建、拓扑校验、INP 导出与读回、结果 CSV 和压力着色图
"""
import sys
import warnings
from datetime import date
from pathlib import Path
import matplotlib
matplotlib.use('Agg')  # 使用非交互式后端
import matplotlib.pyplot as plt

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent))

from Netinp import (
    NetworkExportWarning,
    build_network_graph,
    export_network,
    read_inp,
    results_to_csv,
    export_filenames,
    validate_network,
    write_export,
)
from Netinp.colors import PRESSURE_COLORS, legend_entries
from Netinp.results import result_colors


def create_demo_network():
    """
    创建一个水库-管道-节点-水泵-水池的典型供水管网

    拓扑: R1 --P1--> J1 --P2--> J2 --PU1--> T1
                      \\--P3--> J3
    """
    def point(fid, kind, x, y, **props):
        return {
            "id": fid,
            "featureType": kind,
            "geometry": {"type": "Point", "coordinates": [x, y]},
            "properties": props,
        }

    def line(fid, kind, start, end, coords=None, **props):
        return {
            "id": fid,
            "featureType": kind,
            "geometry": {"type": "LineString", "coordinates": coords} if coords else None,
            "startNodeId": start,
            "endNodeId": end,
            "properties": props,
        }

    features = [
        # 水源
        point("R1", "reservoir", 0, 0, head=120),
        # 用水节点
        point("J1", "junction", 400, 0, elevation=30, demand=12, pattern="RES"),
        point("J2", "junction", 800, 0, elevation=35, demand=8, pattern="RES"),
        point("J3", "junction", 400, -300, elevation=28, demand=5),
        # 高位水池
        point("T1", "tank", 800, 300, elevation=60, initLevel=4, minLevel=1, maxLevel=8, diameter=20),
        line("P1", "pipe", "R1", "J1", diameter=300, roughness=120),
        line("P2", "pipe", "J1", "J2", [[400, 0], [600, 50], [800, 0]], diameter=250, roughness=120),
        line("P3", "pipe", "J1", "J3", diameter=150, roughness=110),
        line("PU1", "pump", "J2", "T1", headCurve="C1"),
    ]
    patterns = [{
        "id": "RES",
        "description": "Residential",
        "multipliers": [0.6, 0.5, 0.5, 0.6, 0.8, 1.1, 1.4, 1.3, 1.1, 1.0, 1.0, 1.0,
                        1.1, 1.0, 0.9, 0.9, 1.0, 1.2, 1.4, 1.3, 1.1, 0.9, 0.7, 0.6],
    }]
    curves = [{"id": "C1", "type": "PUMP", "description": "Booster",
               "points": [{"x": 0, "y": 45}, {"x": 30, "y": 38}, {"x": 60, "y": 20}]}]
    controls = [
        {"id": "c1", "linkId": "PU1", "status": "CLOSED", "type": "HI LEVEL", "nodeId": "T1", "value": 7.5},
        {"id": "c2", "linkId": "PU1", "status": "OPEN", "type": "LOW LEVEL", "nodeId": "T1", "value": 2},
    ]
    settings = {"title": "Demo Town", "units": "LPS", "headloss": "H-W", "projection": "Simple"}
    return features, settings, patterns, curves, controls


def demo_results():
    """构造两个时刻的模拟结果（实际应用中由求解器给出）"""
    snapshots = []
    for seconds, factor in ((0, 1.0), (3600, 0.8)):
        snapshots.append({
            "timeStep": seconds,
            "nodes": {
                "J1": {"id": "J1", "demand": 12 * factor, "head": 110.2, "pressure": 80.2 * factor},
                "J2": {"id": "J2", "demand": 8 * factor, "head": 104.7, "pressure": 69.7 * factor},
                "J3": {"id": "J3", "demand": 5 * factor, "head": 108.9, "pressure": 80.9 * factor},
            },
            "links": {
                "P1": {"id": "P1", "status": "OPEN", "flow": 25 * factor, "velocity": 0.35, "headloss": 0.9},
                "P2": {"id": "P2", "status": "OPEN", "flow": 8 * factor, "velocity": 0.16, "headloss": 0.4},
            },
        })
    return {"snapshots": snapshots, "timestamps": [0, 3600]}


def run_demo():
    """执行完整流程"""
    print("=" * 70)
    print("给水管网校验与 INP 导出示例")
    print("=" * 70)
    output_dir = Path(__file__).parent / "output"

    # 1. 构建管网
    print("\n[1/5] 构建管网图...")
    features, settings, patterns, curves, controls = create_demo_network()
    graph = build_network_graph(features, crs=settings["projection"])
    print(f"  ✓ 节点数: {len(graph.nodes)}")
    print(f"  ✓ 管段数: {len(graph.links)}")

    # 2. 拓扑校验
    print("\n[2/5] 拓扑校验...")
    report = validate_network(graph, controls, patterns, curves)
    print(f"  ✓ 错误: {len(report.errors)}  警告: {len(report.warnings)}")
    for issue in report.warnings:
        print(f"    - {issue.message}")
    if not report.is_valid:
        for issue in report.errors:
            print(f"  ✗ {issue.message}")
        return False

    # 3. 导出 INP
    print("\n[3/5] 导出 INP...")
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", NetworkExportWarning)
        result = export_network(
            features, "inp", settings=settings, patterns=patterns, curves=curves,
            controls=controls, today=date.today(),
        )
    if not result.is_complete:
        print(f"  ✗ {result.message}")
        return False
    target = write_export(result, output_dir)
    print(f"  ✓ 已写入: {target}")
    for w in caught:
        print(f"    ! {w.message}")

    # 4. 读回校验
    print("\n[4/5] 读回 INP...")
    project = read_inp(result.content, source_crs=settings["projection"])
    print(f"  ✓ 要素: {len(project.features)}  模式: {len(project.patterns)}  "
          f"曲线: {len(project.curves)}  控制: {len(project.controls)}")

    # 5. 结果导出与着色
    print("\n[5/5] 导出模拟结果并绘图...")
    history = demo_results()
    names = export_filenames()
    for element in ("nodes", "links"):
        path = output_dir / names[element]
        path.write_text(results_to_csv(history, element), encoding="utf-8")
        print(f"  ✓ {element}: {path}")

    colors = result_colors(history["snapshots"][0])
    fig, ax = plt.subplots(figsize=(8, 6))
    for link in graph.links.values():
        xs = [v[0] for v in link.vertices]
        ys = [v[1] for v in link.vertices]
        ax.plot(xs, ys, color="#64748b", linewidth=2, zorder=1)
    for node in graph.nodes.values():
        x, y = node.coordinates
        ax.scatter(x, y, s=80, color=colors.get(node.id, "#1e293b"), edgecolors="black", zorder=2)
        ax.annotate(node.id, (x, y), textcoords="offset points", xytext=(6, 6))
    for entry in legend_entries(0, 80, PRESSURE_COLORS, class_count=4):
        ax.scatter([], [], color=entry["color"], label=f"{entry['min']:.0f}-{entry['max']:.0f} m")
    ax.set_title("节点压力 (t = 00:00)")
    ax.set_aspect("equal")
    ax.legend(title="压力")
    ax.grid(True, alpha=0.3)

    output_png = output_dir / "network_pressure.png"
    plt.savefig(output_png, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"  ✓ 图表已保存到: {output_png}")

    print("\n✅ 示例运行完成!")
    return True


if __name__ == "__main__":
    success = run_demo()
    sys.exit(0 if success else 1)
