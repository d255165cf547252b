from feature_pipelines.cli import main

main()
