"""
Micro-benchmark for the MiGeL matcher.

Tests:
1. normalize_text() / extract_keywords() hot path
2. build_index() on a synthetic 5k-position catalog
3. run_matching() end-to-end on 1k synthetic UDI rows

Usage:
    python scripts/benchmark_matcher.py
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import time
import pandas as pd
import numpy as np
from matcher import (
    Language, build_catalog_item, build_index, extract_keywords,
    normalize_text, run_matching,
)

DE_NOUNS = ['Rollstuhl', 'Katheter', 'Orthese', 'Bandage', 'Inhalationsgerät', 'Kompressionsstrumpf',
            'Absauggerät', 'Stoma-Beutel', 'Gehhilfe', 'Insulinpumpe', 'Verbandmaterial', 'Hörgerät']
DE_QUALIFIERS = ['manuell', 'elektrisch', 'faltbar', 'Einweg', 'Kinder', 'Erwachsene',
                 'Oberschenkel', 'Unterarm', 'Nacht', 'mobil']
FR_NOUNS = ['fauteuil roulant', 'cathéter', 'orthèse', 'bandage', 'inhalateur', 'bas de contention']
IT_NOUNS = ['sedia a rotelle', 'catetere', 'ortesi', 'bendaggio', 'inalatore', 'calza elastica']

rng = np.random.default_rng(42)


def generate_synthetic_catalog(n_items: int = 5000):
    """Synthetic MiGeL-like catalog: one DE/FR/IT text per position."""
    items = []
    for i in range(n_items):
        noun = rng.integers(len(DE_NOUNS))
        quals = rng.choice(DE_QUALIFIERS, size=2, replace=False)
        de = f"{DE_NOUNS[noun]} {quals[0]} {quals[1]}\nZubehör und Ersatzteile inbegriffen"
        fr = f"{FR_NOUNS[noun % len(FR_NOUNS)]} {i}"
        it = f"{IT_NOUNS[noun % len(IT_NOUNS)]} {i}"
        items.append(build_catalog_item(
            f"{i // 1000:02d}.{i // 100 % 10:02d}.{i % 100:02d}.00.1",
            {Language.DE: (de, ''), Language.FR: (fr, ''), Language.IT: (it, '')},
        ))
    return items


def generate_synthetic_rows(n_rows: int = 1000) -> pd.DataFrame:
    """Synthetic flattened UDI rows; roughly a third carry a catalog noun."""
    data = []
    for i in range(n_rows):
        if rng.random() < 0.33:
            name = f"{rng.choice(DE_NOUNS)} {rng.choice(DE_QUALIFIERS)} Modell {i}"
        else:
            name = f"Schraube Titan {i} mm"
        data.append({
            'companyName': rng.choice(['Acme Medical AG', 'Helvetia Med', 'Alpina Care']),
            'deviceName': '',
            'modelName': f"M-{i}",
            'udiDiCode': f"0761{i:09d}",
            'tradeName_DE': name,
            'tradeName_EN': '',
        })
    return pd.DataFrame(data)


def benchmark_function(func, *args, **kwargs):
    """Benchmark a function and return (result, elapsed_ms)."""
    start = time.perf_counter()
    result = func(*args, **kwargs)
    elapsed_ms = (time.perf_counter() - start) * 1000
    return result, elapsed_ms


def benchmark_text_hot_path(n_iterations: int = 10000):
    print("\n" + "="*70)
    print("BENCHMARK: normalize_text() / extract_keywords()")
    print("="*70)

    test_strings = [
        "ABSAUGGERÄTE für Sekret, netzunabhängig",
        "Kompressionsstrumpf Oberschenkel Klasse II",
        "Fauteuil roulant pliable à propulsion manuelle",
    ]
    for test_str in test_strings:
        start = time.perf_counter()
        for _ in range(n_iterations):
            extract_keywords(normalize_text(test_str))
        elapsed_ms = (time.perf_counter() - start) * 1000
        print(f"\nInput: {test_str}")
        print(f"  Total: {elapsed_ms:.2f}ms ({n_iterations} calls)")
        print(f"  Per call: {elapsed_ms * 1000 / n_iterations:.2f}μs")


def benchmark_build_index():
    print("\n" + "="*70)
    print("BENCHMARK: build_index() - 5k positions")
    print("="*70)

    items, gen_time = benchmark_function(generate_synthetic_catalog, 5000)
    print(f"  Catalog generation (incl. keyword extraction): {gen_time:.2f}ms")
    index, elapsed = benchmark_function(build_index, items)
    print(f"  Index build: {elapsed:.2f}ms")
    print(f"  Unique keywords: {len(index)}")
    return items, index


def benchmark_run_matching(items, index):
    print("\n" + "="*70)
    print("BENCHMARK: run_matching() - 1k UDI rows")
    print("="*70)

    df_rows = generate_synthetic_rows(1000)
    df_result, match_time = benchmark_function(run_matching, df_rows, items, index)
    matched = int((df_result['migel_code'] != '').sum())

    print(f"  Matching time: {match_time:.2f}ms")
    print(f"  Per-row time: {match_time / len(df_rows):.2f}ms")
    print(f"  Throughput: {len(df_rows) / (match_time / 1000):.0f} rows/sec")
    print(f"  Matched: {matched} ({matched / len(df_rows) * 100:.1f}%)")


def main():
    print("="*70)
    print("MIGEL MATCHER BENCHMARK")
    print("="*70)

    benchmark_text_hot_path(10000)
    items, index = benchmark_build_index()
    benchmark_run_matching(items, index)

    print("\n" + "="*70)
    print("BENCHMARK COMPLETE")
    print("="*70)


if __name__ == '__main__':
    main()
