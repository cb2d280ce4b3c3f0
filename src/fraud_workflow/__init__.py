"""
Fraud Workflow: supervised fraud-detection experimentation on transaction data.

This package runs the complete model-building workflow for the PaySim-style
transaction dataset: loading and exploring the data, stratified splitting,
fit-once/apply-many preprocessing, model fitting, k-fold cross-validation,
hyperparameter tuning, test-set evaluation, and model export.

Modules:
    config:        WorkflowConfig (YAML + environment overrides) and logging setup
    data_loading:  load_transactions, schema validation, exploratory summaries
    splitting:     stratified_split and make_folds
    recipe:        Recipe / FittedRecipe and the preprocessing steps
    models:        ModelSpec declarations and FittedModel
    workflow:      Workflow value, last_fit, finalize_workflow
    parallel:      map_units worker pool for independent units of work
    resampling:    fit_resamples and ResampleResult
    tuning:        HyperparameterTuner, grid builders, TuneResult
    metrics:       classification metrics and ModelEvaluator
    export:        workflow/metrics persistence (local paths or S3)
    pipeline:      run_workflow, the end-to-end experiment
    cli:           ``fraud-workflow`` command line entry point

Example:
    from fraud_workflow.config import WorkflowConfig
    from fraud_workflow.pipeline import run_workflow

    config = WorkflowConfig.from_yaml("config/workflow.yaml")
    report = run_workflow(config)
    print(report.best_params, report.final.metrics)
"""

__version__ = "0.1.0"
