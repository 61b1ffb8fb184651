import io
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from pointaccrual.config import Config
from pointaccrual.entity import Conditions, Customer, Record, Reward, Rule, RuleType
from pointaccrual.errors import AppError
from pointaccrual.models import FileInput, PurchaseRecord
from pointaccrual.service import (
    AccumulatePointService,
    calculate_batch_points,
    save_file,
    validate_and_calculate_points,
)

HEADER = "customer_id,product_id,category_id,category_name,branch_id,purchased_amount,currency\n"
DAY15 = datetime(2025, 1, 15, tzinfo=timezone.utc)
DAY16 = datetime(2025, 1, 16, tzinfo=timezone.utc)


class FakeRuleRepository:
    def __init__(self, rules, error=None):
        self.rules = rules
        self.error = error
        self.calls = []

    def get_active_rules(self, branch_categories):
        self.calls.append(branch_categories)
        if self.error is not None:
            raise self.error
        return self.rules


class FakeCustomerRepository:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.get_calls = []
        self.update_calls = []

    def get_customers(self, customer_ids):
        self.get_calls.append(list(customer_ids))
        return self.responses.pop(0)

    def update_bulk_customers(self, updates):
        self.update_calls.append(list(updates))


def fresh_customers(*ids):
    return [Customer(customer_id=cid) for cid in ids]


@pytest.fixture
def config(tmp_path):
    return Config(
        mongo_uri="mongodb://localhost:27017",
        mongo_db_name="pointdb",
        file_path=str(tmp_path / "output_%s.csv"),
    )


def fixed_rule(value, min_amount="50", **conditions):
    return Rule(
        rule_type=RuleType.FIXED_POINT,
        id="RULE001",
        conditions=Conditions(min_amount=Decimal(min_amount), **conditions),
        reward=Reward(value=value),
    )


def test_execute_no_files(config):
    service = AccumulatePointService(FakeRuleRepository([]), FakeCustomerRepository(), config)
    with pytest.raises(AppError) as info:
        service.execute_multiple_files([])
    assert "no files" in str(info.value)
    assert info.value.code == "INVALID_ARGUMENT"


def test_execute_csv_header_error(config):
    service = AccumulatePointService(FakeRuleRepository([]), FakeCustomerRepository(), config)
    files = [FileInput(DAY15, io.StringIO("invalid,csv,data\nwithout,proper,headers"))]
    with pytest.raises(AppError) as info:
        service.execute_multiple_files(files)
    assert info.value.code == "INVALID_ARGUMENT"


def test_execute_no_points_calculated(config, tmp_path):
    csv_data = HEADER + "U000001,123121,CT1001,ELECTRONICS,BR0001,10.00,THB"
    customers = fresh_customers("U000001")
    customer_repo = FakeCustomerRepository(customers, customers)
    service = AccumulatePointService(
        FakeRuleRepository([fixed_rule(10, "100")]), customer_repo, config
    )

    service.execute_multiple_files([FileInput(DAY15, io.StringIO(csv_data))])

    assert customer_repo.get_calls == [["U000001"], []]
    assert customer_repo.update_calls == []
    content = (tmp_path / "output_2025-01-15.csv").read_text()
    assert content == "customer_id,points,last_purchase_date\n"


def test_execute_multiple_files(config, tmp_path):
    csv1 = HEADER + "U000001,123121,CT1001,ELECTRONICS,BR0001,100.50,THB"
    csv2 = HEADER + "U000002,123122,CT1002,FASHION,BR0002,200.00,THB"
    updated = [
        Customer("U000001", points=10, points_by_date={"2025-01-15": 10}),
        Customer("U000002", points=10, points_by_date={"2025-01-16": 10}),
    ]
    customer_repo = FakeCustomerRepository(fresh_customers("U000001", "U000002"), updated)
    service = AccumulatePointService(FakeRuleRepository([fixed_rule(10)]), customer_repo, config)

    service.execute_multiple_files(
        [FileInput(DAY15, io.StringIO(csv1)), FileInput(DAY16, io.StringIO(csv2))]
    )

    assert len(customer_repo.update_calls) == 1
    assert (tmp_path / "output_2025-01-15.csv").read_text() == (
        "customer_id,points,last_purchase_date\nU000001,10,2025-01-15\n"
    )
    assert (tmp_path / "output_2025-01-16.csv").read_text() == (
        "customer_id,points,last_purchase_date\n"
        "U000002,10,2025-01-16\n"
        "U000001,10,2025-01-15\n"
    )


def test_execute_duplicate_records(config):
    csv_data = (
        HEADER
        + "U000001,123121,CT1001,ELECTRONICS,BR0001,100.50,THB\n"
        + "U000001,123121,CT1001,ELECTRONICS,BR0001,100.50,THB\n"
        + "U000002,123122,CT1002,FASHION,BR0002,200.00,THB"
    )
    customers = fresh_customers("U000001", "U000002")
    customer_repo = FakeCustomerRepository(customers, customers)
    service = AccumulatePointService(FakeRuleRepository([fixed_rule(10)]), customer_repo, config)

    service.execute_multiple_files([FileInput(DAY15, io.StringIO(csv_data))])

    first_ids = customer_repo.get_calls[0]
    assert sorted(first_ids) == ["U000001", "U000002"]
    assert len(customer_repo.update_calls[0]) == 2
    points = {u.customer_id: u.points_to_add for u in customer_repo.update_calls[0]}
    assert points == {"U000001": 10, "U000002": 10}


def test_execute_complex_rules(config):
    csv_data = (
        HEADER
        + "U000001,123121,CT1001,ELECTRONICS,BR0001,100.00,THB\n"
        + "U000001,123122,CT1002,FASHION,BR0002,200.00,THB\n"
        + "U000002,123123,CT1001,ELECTRONICS,BR0001,150.00,THB"
    )
    rules = [
        fixed_rule(20, branch_id="BR0001", category_ids=["CT1001"]),
        Rule(
            rule_type=RuleType.PERCENTAGE,
            id="RULE002",
            conditions=Conditions(min_amount=Decimal("100")),
            reward=Reward(value=5),
        ),
    ]
    customers = fresh_customers("U000001", "U000002")
    rule_repo = FakeRuleRepository(rules)
    customer_repo = FakeCustomerRepository(customers, customers)
    service = AccumulatePointService(rule_repo, customer_repo, config)

    service.execute_multiple_files([FileInput(DAY15, io.StringIO(csv_data))])

    assert rule_repo.calls == [{"BR0001": ["CT1001"], "BR0002": ["CT1002"]}]
    assert customer_repo.get_calls == [["U000001", "U000002"], []]
    points = {u.customer_id: u.points_to_add for u in customer_repo.update_calls[0]}
    assert points == {"U000001": 35, "U000002": 27}


def test_execute_propagates_repository_error(config):
    failure = AppError("INTERNAL_ERROR", "database connection failed")
    service = AccumulatePointService(
        FakeRuleRepository([], error=failure), FakeCustomerRepository(), config
    )
    csv_data = HEADER + "U000001,1,CT1,X,BR1,10,THB"
    with pytest.raises(AppError) as info:
        service.execute_multiple_files([FileInput(DAY15, io.StringIO(csv_data))])
    assert info.value is failure


def test_calculate_batch_points_multiple_rules_per_record():
    rules = [
        fixed_rule(10),
        Rule(
            rule_type=RuleType.PERCENTAGE,
            id="RULE002",
            conditions=Conditions(min_amount=Decimal("50")),
            reward=Reward(value=5),
        ),
    ]
    records = [
        PurchaseRecord(
            customer_id="U000001",
            product_id="P001",
            branch_id="BR001",
            category_id="CT001",
            purchased_amount=Decimal("100"),
            purchase_date=DAY15,
        )
    ]
    result = calculate_batch_points(rules, records, fresh_customers("U000001"))
    assert len(result) == 1
    update = result[0]
    assert update.customer_id == "U000001"
    assert update.points_to_add == 15
    assert update.last_purchase_date == DAY15
    assert len(update.records) == 2


def test_calculate_batch_points_existing_customer_points():
    records = [
        PurchaseRecord(
            customer_id="U000001",
            product_id="P001",
            branch_id="BR001",
            category_id="CT001",
            purchased_amount=Decimal("100"),
            purchase_date=DAY15,
        )
    ]
    customers = [Customer("U000001", points=50, points_by_date={"2025-01-14": 50})]
    result = calculate_batch_points([fixed_rule(10)], records, customers)
    assert len(result) == 1
    assert result[0].points_to_add == 10
    assert result[0].points_by_date["2025-01-15"] == 10


def test_calculate_batch_points_multiple_transactions_same_day():
    rule = Rule(rule_type=RuleType.FIXED_POINT, id="RULE001", reward=Reward(value=10))
    records = [
        PurchaseRecord(customer_id="U000001", purchased_amount=Decimal("100"), purchase_date=DAY15),
        PurchaseRecord(customer_id="U000001", purchased_amount=Decimal("200"), purchase_date=DAY15),
    ]
    result = calculate_batch_points([rule], records, [])
    assert len(result) == 1
    assert result[0].customer_id == "U000001"
    assert result[0].points_to_add == 20
    assert result[0].points_by_date["2025-01-15"] == 20


def test_calculate_batch_points_nothing_applies():
    records = [PurchaseRecord(customer_id="U1", purchased_amount=Decimal("1"), purchase_date=DAY15)]
    assert calculate_batch_points([fixed_rule(10)], records, []) == []


def test_calculate_batch_points_tracks_latest_date():
    rule = Rule(rule_type=RuleType.FIXED_POINT, reward=Reward(value=3))
    records = [
        PurchaseRecord(customer_id="U1", product_id="A", purchase_date=DAY16),
        PurchaseRecord(customer_id="U1", product_id="B", purchase_date=DAY15),
    ]
    result = calculate_batch_points([rule], records, [])
    assert result[0].last_purchase_date == DAY16
    assert result[0].points_by_date == {"2025-01-16": 3, "2025-01-15": 3}


def two_customers():
    return [
        Customer("U000001", points=100, points_by_date={"2025-01-15": 100}),
        Customer("U000002", points=200, points_by_date={"2025-01-15": 200}),
    ]


def test_save_file_success(tmp_path):
    file_path = str(tmp_path / "output_%s.csv")
    result = save_file(two_customers(), file_path, "2025-01-15")
    assert result is None
    output = Path(file_path % "2025-01-15")
    assert output.is_file()
    assert output.read_text() == (
        "customer_id,points,last_purchase_date\n"
        "U000002,200,2025-01-15\n"
        "U000001,100,2025-01-15\n"
    )


def test_save_file_sorted_by_points(tmp_path):
    customers = two_customers() + [
        Customer("U000003", points=50, points_by_date={"2025-01-15": 50})
    ]
    save_file(customers, str(tmp_path / "output_%s.csv"), "2025-01-15")
    lines = (tmp_path / "output_2025-01-15.csv").read_text().split("\n")
    assert "U000002" in lines[1]
    assert "U000001" in lines[2]
    assert "U000003" in lines[3]


def test_save_file_sorted_by_last_purchase_date(tmp_path):
    customers = [
        Customer("U000001", points=100, points_by_date={"2025-01-14": 100}),
        Customer("U000002", points=100, points_by_date={"2025-01-15": 100}),
    ]
    save_file(customers, str(tmp_path / "output_%s.csv"), "2025-01-15")
    lines = (tmp_path / "output_2025-01-15.csv").read_text().split("\n")
    assert "U000002" in lines[1]
    assert "U000001" in lines[2]


def test_save_file_creates_directories(tmp_path):
    save_file(two_customers(), str(tmp_path / "nested" / "deeper" / "out_%s.csv"), "2025-01-15")
    assert (tmp_path / "nested" / "deeper" / "out_2025-01-15.csv").is_file()


def test_save_file_invalid_path(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    with pytest.raises(AppError) as info:
        save_file(two_customers(), str(blocker / "output_%s.csv"), "2025-01-15")
    assert info.value.code == "INTERNAL_ERROR"


def test_save_file_empty_customers(tmp_path):
    save_file([], str(tmp_path / "output_%s.csv"), "2025-01-15")
    content = (tmp_path / "output_2025-01-15.csv").read_text()
    assert content == "customer_id,points,last_purchase_date\n"


def purchase(**overrides):
    values = dict(
        customer_id="U000001",
        product_id="P001",
        branch_id="BR001",
        category_id="CT001",
        purchased_amount=Decimal("100"),
        purchase_date=DAY15,
    )
    values.update(overrides)
    return PurchaseRecord(**values)


def ratio_rule(value, unit):
    return Rule(
        rule_type=RuleType.RATIO,
        conditions=Conditions(min_amount=Decimal("50")),
        reward=Reward(value=value, ratio_unit=unit),
    )


@pytest.mark.parametrize("unit", [None, 0.0, -10.0])
def test_ratio_rule_without_positive_unit(unit):
    assert validate_and_calculate_points(ratio_rule(2, unit), purchase(), []) == (0, False)


def test_ratio_rule_floor_calculation():
    record = purchase(purchased_amount=Decimal("175"))
    assert validate_and_calculate_points(ratio_rule(5, 30.0), record, []) == (25, True)


def test_unknown_rule_type():
    rule = Rule(
        rule_type="UNKNOWN_RULE",
        conditions=Conditions(min_amount=Decimal("50")),
        reward=Reward(value=10),
    )
    assert validate_and_calculate_points(rule, purchase(), []) == (0, False)


def test_category_matching():
    rule = fixed_rule(10, category_ids=["CT001", "CT002", "CT003"])
    assert validate_and_calculate_points(rule, purchase(category_id="CT002"), []) == (10, True)


def test_category_not_matching():
    rule = fixed_rule(10, category_ids=["CT001"])
    assert validate_and_calculate_points(rule, purchase(category_id="CT009"), []) == (0, False)


def test_empty_category_ids():
    rule = fixed_rule(10, category_ids=[])
    record = purchase(category_id="ANY_CATEGORY")
    assert validate_and_calculate_points(rule, record, []) == (10, True)


def test_empty_branch_id():
    rule = fixed_rule(10, branch_id="")
    record = purchase(branch_id="ANY_BRANCH")
    assert validate_and_calculate_points(rule, record, []) == (10, True)


def test_branch_mismatch():
    rule = fixed_rule(10, branch_id="BR002")
    assert validate_and_calculate_points(rule, purchase(), []) == (0, False)


def test_below_min_amount():
    assert validate_and_calculate_points(fixed_rule(10, "100.01"), purchase(), []) == (0, False)


def test_customer_not_found():
    record = purchase(customer_id="UNKNOWN_CUSTOMER")
    customers = [Customer("U000001")]
    assert validate_and_calculate_points(fixed_rule(10), record, customers) == (10, True)


def test_duplicate_record_is_skipped():
    customers = [
        Customer(
            "U000001",
            records=[
                Record(
                    product_id="P001",
                    branch_id="BR001",
                    amount=Decimal("100.0"),
                    purchase_date=DAY15,
                )
            ],
        )
    ]
    assert validate_and_calculate_points(fixed_rule(10), purchase(), customers) == (0, False)


def test_same_purchase_other_day_is_not_duplicate():
    customers = [
        Customer(
            "U000001",
            records=[
                Record(
                    product_id="P001",
                    branch_id="BR001",
                    amount=Decimal("100"),
                    purchase_date=DAY15 + timedelta(days=1),
                )
            ],
        )
    ]
    assert validate_and_calculate_points(fixed_rule(10), purchase(), customers) == (10, True)


def test_percentage_rule_zero_result():
    rule = Rule(
        rule_type=RuleType.PERCENTAGE,
        conditions=Conditions(min_amount=Decimal("50")),
        reward=Reward(value=1),
    )
    record = purchase(purchased_amount=Decimal("99.99"))
    assert validate_and_calculate_points(rule, record, []) == (0, True)


def test_percentage_rule_truncates():
    rule = Rule(rule_type=RuleType.PERCENTAGE, reward=Reward(value=5))
    record = purchase(purchased_amount=Decimal("150"))
    assert validate_and_calculate_points(rule, record, []) == (7, True)