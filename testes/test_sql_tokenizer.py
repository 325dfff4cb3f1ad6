import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from blog_migrator.extractors.sql_tokenizer import (
    WORDPRESS_SCHEMAS,
    TableNotFoundError,
    encode_insert,
    extract_columns,
    list_tables,
    sql_literal,
    tokenize,
)
from blog_migrator.utils.errors import Diagnostics


def test_doubled_quote_and_null():
    dump = "INSERT INTO `wp_posts` VALUES (1,'O''Brien wrote this',NULL);\n"
    assert tokenize(dump, "wp_posts") == [["1", "O'Brien wrote this", None]]


def test_null_keyword_differs_from_empty_and_quoted_null():
    dump = "INSERT INTO `t` VALUES ('',NULL,'NULL');"
    assert tokenize(dump, "t") == [["", None, "NULL"]]


def test_backslash_escapes_are_decoded():
    dump = r"INSERT INTO `t` VALUES ('it\'s','a\nb','tab\there','back\\slash');"
    assert tokenize(dump, "t") == [["it's", "a\nb", "tab\there", "back\\slash"]]


def test_commas_and_parentheses_inside_quotes_do_not_split():
    dump = "INSERT INTO `t` VALUES (7,'a, (b) and c','x');"
    assert tokenize(dump, "t") == [["7", "a, (b) and c", "x"]]


def test_multiple_rows_and_statements():
    dump = (
        "INSERT INTO `t` VALUES (1,'a'),(2,'b');\n"
        "INSERT INTO `t` VALUES (3,'c');\n"
    )
    assert tokenize(dump, "t") == [["1", "a"], ["2", "b"], ["3", "c"]]


def test_only_the_requested_table_is_read():
    dump = (
        "INSERT INTO `wp_postmeta` VALUES (1,1,'_thumbnail_id','5');\n"
        "INSERT INTO `wp_posts` VALUES (1,'Hello');\n"
    )
    assert tokenize(dump, "wp_posts") == [["1", "Hello"]]


def test_binary_introducer_is_dropped():
    dump = "INSERT INTO `t` VALUES (1,_binary 'abc');"
    assert tokenize(dump, "t") == [["1", "abc"]]


def test_row_width_matches_column_schema():
    columns = ("ID", "post_title", "post_content", "post_status")
    dump = encode_insert("wp_posts", columns, [[7, "Hello, (world)", "<p>it's</p>", "publish"]])
    rows = tokenize(dump, "wp_posts")
    assert len(rows) == 1
    assert len(rows[0]) == len(extract_columns(dump, "wp_posts")) == 4


def test_encoded_values_are_read_back():
    values = ["plain", "with, comma", "(parens)", "it's \"quoted\"", "back\\slash", "multi\nline\ttab", "", None, "NULL"]
    columns = [f"c{i}" for i in range(len(values))]
    dump = encode_insert("t", columns, [values])
    assert tokenize(dump, "t") == [values]


def test_malformed_statement_is_dropped_and_parsing_resumes():
    diagnostics = Diagnostics()
    dump = (
        "INSERT INTO `t` VALUES (1,'ok'),(2,'broken);\n"
        "INSERT INTO `t` VALUES (3,'next');\n"
    )
    assert tokenize(dump, "t", diagnostics) == [["1", "ok"], ["3", "next"]]
    assert diagnostics.count("malformed_statement") == 1


def test_row_left_open_at_end_of_dump():
    diagnostics = Diagnostics()
    dump = "INSERT INTO `t` VALUES (1,'a'),(2,'b'"
    assert tokenize(dump, "t", diagnostics) == [["1", "a"]]
    assert diagnostics.count("malformed_statement") == 1


def test_missing_table_raises():
    with pytest.raises(TableNotFoundError) as exc_info:
        tokenize("INSERT INTO `other` VALUES (1);", "wp_posts")
    assert exc_info.value.table_name == "wp_posts"


def test_extract_columns_from_insert_column_list():
    dump = "INSERT INTO `wp_posts` (`ID`, `post_title`) VALUES (1,'a');"
    assert extract_columns(dump, "wp_posts") == ("ID", "post_title")


def test_extract_columns_from_create_table():
    dump = (
        "CREATE TABLE `wp_terms` (\n"
        "  `term_id` bigint(20) unsigned NOT NULL AUTO_INCREMENT,\n"
        "  `name` varchar(200) NOT NULL DEFAULT '',\n"
        "  PRIMARY KEY (`term_id`)\n"
        ") ENGINE=InnoDB;\n"
        "INSERT INTO `wp_terms` VALUES (1,'News');\n"
    )
    assert extract_columns(dump, "wp_terms") == ("term_id", "name")


def test_extract_columns_falls_back_to_wordpress_layout():
    dump = "INSERT INTO `blog_term_relationships` VALUES (1,2,0);"
    assert extract_columns(dump, "blog_term_relationships") == WORDPRESS_SCHEMAS["term_relationships"]
    assert extract_columns(dump, "blog_postmeta") == WORDPRESS_SCHEMAS["postmeta"]
    assert extract_columns(dump, "custom_table") == ()


def test_list_tables_in_dump_order():
    dump = (
        "INSERT INTO `wp_users` VALUES (1);\n"
        "INSERT INTO `wp_posts` VALUES (1);\n"
        "INSERT INTO `wp_users` VALUES (2);\n"
    )
    assert list_tables(dump) == ["wp_users", "wp_posts"]


def test_sql_literal():
    assert sql_literal(None) == "NULL"
    assert sql_literal(True) == "1"
    assert sql_literal(42) == "42"
    assert sql_literal("O'Brien") == "'O\\'Brien'"
