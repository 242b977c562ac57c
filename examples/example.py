from hierarchical_clustering.agglomerative import agglomerative

if __name__ == "__main__":
    # Example dataset
    X = [
        [1.0, 0.0],
        [9.0, 1.0],
        [1.0, 1.0],
        [6.0, 2.0],
        [5.0, 6.0],
    ]

    # Perform agglomerative clustering
    clusters, Z = agglomerative(X, threshold=3.5, linkage="average", return_linkage=True)

    for left, right, height in Z:
        print(f"Merge {left} + {right} at {height:.3f}")

    for data, cluster in zip(X, clusters):
        print(f"Data point: {data}, Cluster: {cluster}")
